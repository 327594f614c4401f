"""
Schedule sync and realtime poll pipelines, and the pieces they are built from
"""
