from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from transit_sync.ingestion.decoder import GTFS_RT_FEED_MESSAGE

# feed classes that headers are keyed by
SCHEDULE = "schedule"
REALTIME = "realtime"

# realtime feed names
TRIP_UPDATES = "trip_updates"
VEHICLE_POSITIONS = "vehicle_positions"


@dataclass(frozen=True)
class SourceConfig:
    """
    Everything needed to sync and poll one upstream publisher. Built once by
    build_source_configs and never changed afterwards.
    """

    group_name: str
    name: str
    schedule_url: str
    realtime_urls: Mapping[str, str]
    schedule_headers: Mapping[str, str] = field(default_factory=dict)
    realtime_headers: Mapping[str, str] = field(default_factory=dict)
    message_type: str = GTFS_RT_FEED_MESSAGE
    method: str = "GET"

    @property
    def source_id(self) -> str:
        """unique identity used for freshness records and table names"""
        return f"{self.group_name}_{self.name}"


@dataclass(frozen=True)
class SourceDefaults:
    """values shared by every source of a group unless a source overrides them"""

    headers: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    message_type: str = GTFS_RT_FEED_MESSAGE
    method: str = "GET"


@dataclass(frozen=True)
class SourceOverride:
    """
    per source values. headers are merged with the group defaults per feed
    class, everything else replaces the default when set.
    """

    name: str
    schedule_url: str
    realtime_urls: Mapping[str, str]
    headers: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    message_type: Optional[str] = None
    method: Optional[str] = None


def merge_headers(
    defaults: Mapping[str, Mapping[str, str]],
    overrides: Mapping[str, Mapping[str, str]],
    feed_class: str,
) -> Dict[str, str]:
    """headers for one feed class, per source values win"""
    merged = dict(defaults.get(feed_class, {}))
    merged.update(overrides.get(feed_class, {}))
    return merged


def build_source_configs(
    group_name: str,
    defaults: SourceDefaults,
    overrides: Sequence[SourceOverride],
) -> List[SourceConfig]:
    """
    merge group defaults into every source of a group

    @param group_name - name of the group (ie. NSW)
    @param defaults - values shared by the group
    @param overrides - one entry per source, in the order sources are run

    @return List[SourceConfig] - one immutable config per source
    """
    configs = []
    seen_names = set()
    for override in overrides:
        # names may carry a url path, ie. lightrail/innerwest
        name = override.name.replace("/", "")
        if name in seen_names:
            raise ValueError(f"duplicate source name {name} in group {group_name}")
        seen_names.add(name)

        if len(override.realtime_urls) == 0:
            raise ValueError(f"source {name} in group {group_name} has no realtime feeds")

        configs.append(
            SourceConfig(
                group_name=group_name,
                name=name,
                schedule_url=override.schedule_url,
                realtime_urls=dict(override.realtime_urls),
                schedule_headers=merge_headers(defaults.headers, override.headers, SCHEDULE),
                realtime_headers=merge_headers(defaults.headers, override.headers, REALTIME),
                message_type=override.message_type or defaults.message_type,
                method=override.method or defaults.method,
            )
        )

    return configs
