import os
from typing import Dict, List, Mapping

from transit_sync.ingestion.context import IngestionContext
from transit_sync.ingestion.decoder import GTFS_RT_FEED_MESSAGE
from transit_sync.sources.source_config import (
    REALTIME,
    SCHEDULE,
    TRIP_UPDATES,
    VEHICLE_POSITIONS,
    SourceDefaults,
    SourceOverride,
)
from transit_sync.sources.source_group import SourceGroup

GROUP_NAME = "NSW"

API_ROOT = "https://api.transport.nsw.gov.au"

SYNC_PERIOD_SECONDS = 2 * 60 * 60
POLL_PERIOD_SECONDS = 20

# published on the v1 api for schedule and realtime
V1_FEEDS = [
    "buses",
    "nswtrains",
    "lightrail/cbdandsoutheast",
    "lightrail/innerwest",
    "lightrail/newcastle",
    "lightrail/parramatta",
    "ferries/sydneyferries",
    "regionbuses/centralwestandorana",
    "regionbuses/centralwestandorana2",
    "regionbuses/newenglandnorthwest",
    "regionbuses/northcoast",
    "regionbuses/northcoast2",
    "regionbuses/northcoast3",
    "regionbuses/riverinamurray",
    "regionbuses/riverinamurray2",
    "regionbuses/southeasttablelands",
    "regionbuses/southeasttablelands2",
    "regionbuses/sydneysurrounds",
    "regionbuses/newcastlehunter",
    "regionbuses/farwest",
]


def realtime_urls(trip_updates_version: str, vehicle_positions_version: str, feed_path: str) -> Dict[str, str]:
    """trip update and vehicle position urls of one feed path"""
    return {
        TRIP_UPDATES: f"{API_ROOT}/{trip_updates_version}/gtfs/realtime/{feed_path}",
        VEHICLE_POSITIONS: f"{API_ROOT}/{vehicle_positions_version}/gtfs/vehiclepos/{feed_path}",
    }


def nsw_defaults(api_key: str) -> SourceDefaults:
    """headers and message type shared by every Transport for NSW feed"""
    authorization = f"apikey {api_key}"
    headers: Mapping[str, Mapping[str, str]] = {
        SCHEDULE: {
            "accept": "application/octet-stream",
            "authorization": authorization,
        },
        REALTIME: {
            "accept": "application/x-google-protobuf",
            "authorization": authorization,
        },
    }
    return SourceDefaults(headers=headers, message_type=GTFS_RT_FEED_MESSAGE)


def nsw_overrides() -> List[SourceOverride]:
    """every Transport for NSW Open Data source, in start order"""
    overrides = [
        SourceOverride(
            name="sydneytrains",
            schedule_url=f"{API_ROOT}/v1/gtfs/schedule/sydneytrains",
            realtime_urls=realtime_urls("v2", "v2", "sydneytrains"),
        ),
        SourceOverride(
            name="metro",
            schedule_url=f"{API_ROOT}/v2/gtfs/schedule/metro",
            realtime_urls=realtime_urls("v2", "v2", "metro"),
        ),
    ]
    overrides += [
        SourceOverride(
            name=feed_path,
            schedule_url=f"{API_ROOT}/v1/gtfs/schedule/{feed_path}",
            realtime_urls=realtime_urls("v1", "v1", feed_path),
        )
        for feed_path in V1_FEEDS
    ]
    return overrides


def build_nsw_group(context: IngestionContext) -> SourceGroup:
    """
    Transport for NSW Open Data group. requires NSW_APIKEY in the environment.
    """
    return SourceGroup.from_config(
        GROUP_NAME,
        nsw_defaults(os.environ["NSW_APIKEY"]),
        nsw_overrides(),
        context,
    )
