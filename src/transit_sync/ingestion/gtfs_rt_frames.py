from typing import Any, Dict, List, Optional

import dataframely as dy
import polars as pl
from google.protobuf.message import Message


class VehiclePositionsTable(dy.Schema):
    """One row per vehicle entity of a GTFS-Realtime feed."""

    entity_id = dy.String()
    trip_id = dy.String(nullable=True)
    route_id = dy.String(nullable=True)
    direction_id = dy.Int64(nullable=True, min=0, max=1)
    start_date = dy.String(nullable=True)
    vehicle_id = dy.String(nullable=True)
    vehicle_label = dy.String(nullable=True)
    latitude = dy.Float64(nullable=True, min=-90, max=90)
    longitude = dy.Float64(nullable=True, min=-180, max=180)
    bearing = dy.Float64(nullable=True)
    speed = dy.Float64(nullable=True)
    current_stop_sequence = dy.Int64(nullable=True)
    stop_id = dy.String(nullable=True)
    current_status = dy.String(nullable=True)
    timestamp = dy.Int64(nullable=True)


class TripUpdatesTable(dy.Schema):
    """Trip update entities, exploded to one row per stop time update."""

    entity_id = dy.String()
    trip_id = dy.String(nullable=True)
    route_id = dy.String(nullable=True)
    start_date = dy.String(nullable=True)
    vehicle_id = dy.String(nullable=True)
    stop_sequence = dy.Int64(nullable=True)
    stop_id = dy.String(nullable=True)
    arrival_time = dy.Int64(nullable=True)
    arrival_delay = dy.Int64(nullable=True)
    departure_time = dy.Int64(nullable=True)
    departure_delay = dy.Int64(nullable=True)
    schedule_relationship = dy.String(nullable=True)
    timestamp = dy.Int64(nullable=True)


def _optional(message: Message, field_name: str) -> Any:
    """value of an optional proto2 field, None when it was never set"""
    if message.HasField(field_name):
        return getattr(message, field_name)
    return None


def _enum_name(message: Message, field_name: str) -> Optional[str]:
    """symbolic name of an optional enum field"""
    if not message.HasField(field_name):
        return None
    enum_type = message.DESCRIPTOR.fields_by_name[field_name].enum_type
    return enum_type.values_by_number[getattr(message, field_name)].name


def _stop_time_event(update: Message, event_name: str) -> Dict[str, Any]:
    if not update.HasField(event_name):
        return {f"{event_name}_time": None, f"{event_name}_delay": None}
    event = getattr(update, event_name)
    return {
        f"{event_name}_time": _optional(event, "time"),
        f"{event_name}_delay": _optional(event, "delay"),
    }


def vehicle_position_rows(feed: Message) -> List[Dict[str, Any]]:
    """flatten every vehicle entity of a feed message"""
    rows = []
    for entity in feed.entity:
        if not entity.HasField("vehicle"):
            continue
        vehicle = entity.vehicle
        position = vehicle.position if vehicle.HasField("position") else None
        rows.append(
            {
                "entity_id": entity.id,
                "trip_id": _optional(vehicle.trip, "trip_id"),
                "route_id": _optional(vehicle.trip, "route_id"),
                "direction_id": _optional(vehicle.trip, "direction_id"),
                "start_date": _optional(vehicle.trip, "start_date"),
                "vehicle_id": _optional(vehicle.vehicle, "id"),
                "vehicle_label": _optional(vehicle.vehicle, "label"),
                "latitude": None if position is None else position.latitude,
                "longitude": None if position is None else position.longitude,
                "bearing": None if position is None else _optional(position, "bearing"),
                "speed": None if position is None else _optional(position, "speed"),
                "current_stop_sequence": _optional(vehicle, "current_stop_sequence"),
                "stop_id": _optional(vehicle, "stop_id"),
                "current_status": _enum_name(vehicle, "current_status"),
                "timestamp": _optional(vehicle, "timestamp"),
            }
        )
    return rows


def trip_update_rows(feed: Message) -> List[Dict[str, Any]]:
    """
    flatten every trip update entity of a feed message. trip updates without
    stop time updates still produce a single row for the trip.
    """
    rows = []
    for entity in feed.entity:
        if not entity.HasField("trip_update"):
            continue
        trip_update = entity.trip_update
        trip_fields = {
            "entity_id": entity.id,
            "trip_id": _optional(trip_update.trip, "trip_id"),
            "route_id": _optional(trip_update.trip, "route_id"),
            "start_date": _optional(trip_update.trip, "start_date"),
            "vehicle_id": _optional(trip_update.vehicle, "id"),
            "timestamp": _optional(trip_update, "timestamp"),
        }

        if len(trip_update.stop_time_update) == 0:
            rows.append(
                {
                    **trip_fields,
                    "stop_sequence": None,
                    "stop_id": None,
                    "arrival_time": None,
                    "arrival_delay": None,
                    "departure_time": None,
                    "departure_delay": None,
                    "schedule_relationship": None,
                }
            )
            continue

        for update in trip_update.stop_time_update:
            rows.append(
                {
                    **trip_fields,
                    "stop_sequence": _optional(update, "stop_sequence"),
                    "stop_id": _optional(update, "stop_id"),
                    **_stop_time_event(update, "arrival"),
                    **_stop_time_event(update, "departure"),
                    "schedule_relationship": _enum_name(update, "schedule_relationship"),
                }
            )
    return rows


def rows_to_frame(rows: List[Dict[str, Any]], schema: type[dy.Schema]) -> pl.DataFrame:
    """build a polars frame with the column layout of a dataframely schema"""
    if len(rows) == 0:
        return schema.create_empty()
    return pl.from_dicts(rows, schema=schema.to_polars_schema())


def merge_trip_progress(trip_updates: pl.DataFrame, vehicle_positions: pl.DataFrame) -> pl.DataFrame:
    """
    combine trip updates and vehicle positions into one row per trip, with the
    predicted delay and the last known position of the vehicle serving it
    """
    updates = (
        trip_updates.filter(pl.col("trip_id").is_not_null())
        .group_by("trip_id")
        .agg(
            pl.col("route_id").drop_nulls().first(),
            pl.col("stop_id").count().alias("stop_time_updates"),
            pl.max_horizontal("arrival_delay", "departure_delay").max().alias("max_delay"),
            pl.col("timestamp").max().alias("updated_at"),
        )
    )

    vehicles = (
        vehicle_positions.filter(pl.col("trip_id").is_not_null())
        .sort("timestamp", descending=True, nulls_last=True)
        .unique(subset="trip_id", keep="first")
        .select(
            "trip_id",
            "vehicle_id",
            "latitude",
            "longitude",
            "current_stop_sequence",
            "current_status",
        )
    )

    return updates.join(vehicles, on="trip_id", how="full", coalesce=True)
