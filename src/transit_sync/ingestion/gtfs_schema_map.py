from typing import Dict, List, NamedTuple, Optional

# sqlite column affinities. values are loaded as text and the storage engine
# converts them on insert according to these declared types.
TEXT = "TEXT"
INTEGER = "INTEGER"
REAL = "REAL"
BOOLEAN = "BOOLEAN"


class TableIndex(NamedTuple):
    """secondary index maintained on a loaded table"""

    index_name: str
    column_name: str


agency = {
    "agency_id": TEXT,
    "agency_name": TEXT,
    "agency_url": TEXT,
    "agency_timezone": TEXT,
    "agency_lang": TEXT,
    "agency_phone": TEXT,
    "agency_fare_url": TEXT,
    "agency_email": TEXT,
}

calendar_dates = {
    "service_id": TEXT,
    "date": INTEGER,
    "exception_type": INTEGER,
}

calendar = {
    "service_id": TEXT,
    "monday": BOOLEAN,
    "tuesday": BOOLEAN,
    "wednesday": BOOLEAN,
    "thursday": BOOLEAN,
    "friday": BOOLEAN,
    "saturday": BOOLEAN,
    "sunday": BOOLEAN,
    "start_date": INTEGER,
    "end_date": INTEGER,
}

feed_info = {
    "feed_publisher_name": TEXT,
    "feed_publisher_url": TEXT,
    "feed_lang": TEXT,
    "feed_version": TEXT,
}

levels = {
    "level_id": TEXT,
    "level_index": REAL,
    "level_name": TEXT,
}

notes = {
    "note_id": TEXT,
    "note_text": TEXT,
}

pathways = {
    "pathway_id": TEXT,
    "from_stop_id": TEXT,
    "to_stop_id": TEXT,
    "pathway_mode": INTEGER,
    "is_bidirectional": BOOLEAN,
    "traversal_time": INTEGER,
}

routes = {
    "route_id": TEXT,
    "agency_id": TEXT,
    "route_short_name": TEXT,
    "route_long_name": TEXT,
    "route_desc": TEXT,
    "route_type": INTEGER,
    "route_color": TEXT,
    "route_text_color": TEXT,
    "exact_times": BOOLEAN,
    "route_url": TEXT,
}

shapes = {
    "shape_id": TEXT,
    "shape_pt_lat": REAL,
    "shape_pt_lon": REAL,
    "shape_pt_sequence": INTEGER,
    "shape_dist_traveled": REAL,
}

stop_times = {
    "trip_id": TEXT,
    "arrival_time": TEXT,
    "departure_time": TEXT,
    "stop_id": TEXT,
    "stop_sequence": INTEGER,
    "stop_headsign": TEXT,
    "pickup_type": INTEGER,
    "drop_off_type": INTEGER,
    "shape_dist_traveled": REAL,
    "timepoint": BOOLEAN,
    "stop_note": TEXT,
}

stops = {
    "stop_id": TEXT,
    "stop_code": TEXT,
    "stop_name": TEXT,
    "stop_desc": TEXT,
    "stop_lat": REAL,
    "stop_lon": REAL,
    "location_type": INTEGER,
    "parent_station": TEXT,
    "wheelchair_boarding": INTEGER,
    "level_id": TEXT,
    "platform_code": TEXT,
    "stop_timezone": TEXT,
}

trips = {
    "route_id": TEXT,
    "service_id": TEXT,
    "trip_id": TEXT,
    "shape_id": TEXT,
    "trip_headsign": TEXT,
    "direction_id": INTEGER,
    "block_id": TEXT,
    "wheelchair_accessible": INTEGER,
    "route_direction": TEXT,
    "trip_note": TEXT,
    "bikes_allowed": INTEGER,
    "vehicle_category_id": TEXT,
}

# Transport for NSW extension files
occupancies = {
    "trip_id": TEXT,
    "stop_sequence": INTEGER,
    "occupancy_status": INTEGER,
    "monday": BOOLEAN,
    "tuesday": BOOLEAN,
    "wednesday": BOOLEAN,
    "thursday": BOOLEAN,
    "friday": BOOLEAN,
    "saturday": BOOLEAN,
    "sunday": BOOLEAN,
    "start_date": INTEGER,
    "end_date": INTEGER,
    "exception": BOOLEAN,
}

vehicle_boardings = {
    "vehicle_category_id": TEXT,
    "child_sequence": INTEGER,
    "grandchild_sequence": INTEGER,
    "boarding_area_id": TEXT,
}

vehicle_categories = {
    "vehicle_category_id": TEXT,
    "vehicle_category_name": TEXT,
}

vehicle_couplings = {
    "parent_id": TEXT,
    "child_id": TEXT,
    "child_sequence": INTEGER,
    "child_label": TEXT,
}

# published in some archives, but not loaded
seats: Dict[str, str] = {}

schema_map = {
    "agency": agency,
    "calendar_dates": calendar_dates,
    "calendar": calendar,
    "feed_info": feed_info,
    "levels": levels,
    "notes": notes,
    "pathways": pathways,
    "routes": routes,
    "shapes": shapes,
    "stop_times": stop_times,
    "stops": stops,
    "trips": trips,
    "occupancies": occupancies,
    "vehicle_boardings": vehicle_boardings,
    "vehicle_categories": vehicle_categories,
    "vehicle_couplings": vehicle_couplings,
    "seats": seats,
}

index_map = {
    "agency": TableIndex("idx_agency_id", "agency_id"),
    "routes": TableIndex("idx_route_id", "route_id"),
    "notes": TableIndex("idx_note_id", "note_id"),
    "trips": TableIndex("idx_trip_id", "trip_id"),
    "shapes": TableIndex("idx_shape_id", "shape_id"),
}


def gtfs_schema(gtfs_table: str) -> Dict[str, str]:
    """
    get the ordered column schema of a gtfs table

    :param gtfs_table: (ie. stop_times)

    :return Dict[gtfs_table_field: storage type]
    """
    schema = schema_map.get(gtfs_table, None)
    if schema is not None:
        return schema.copy()

    raise IndexError(f"{gtfs_table} is not found in schema map")


def gtfs_index(gtfs_table: str) -> Optional[TableIndex]:
    """secondary index configured for a gtfs table, if any"""
    return index_map.get(gtfs_table, None)


def gtfs_schema_list() -> List[str]:
    """
    list of all gtfs tables that a schedule sync will try to load
    """
    return list(schema_map.keys())
