"""SQLite-backed tenant data store for NEMT dispatch, billing, and payroll."""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict, Iterable, List, Optional, Sequence

from nemt.core.config import get_settings
from nemt.core.logging import logger


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def parse_iso_utc(value: Any) -> datetime | None:
    """Parse an ISO timestamp (or datetime) into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _sort_key_time(value: Any) -> str:
    parsed = parse_iso_utc(value)
    return parsed.isoformat() if parsed else str(value)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS sequences (
    tenant_id TEXT NOT NULL,
    key_name TEXT NOT NULL,
    next_value INTEGER NOT NULL,
    PRIMARY KEY (tenant_id, key_name)
);

CREATE TABLE IF NOT EXISTS profiles (
    tenant_id TEXT NOT NULL,
    profile_id TEXT NOT NULL,
    role TEXT NOT NULL,
    status TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, profile_id)
);

CREATE INDEX IF NOT EXISTS idx_profiles_tenant_role ON profiles (tenant_id, role, status);

CREATE TABLE IF NOT EXISTS driver_locations (
    tenant_id TEXT NOT NULL,
    driver_id TEXT NOT NULL,
    recorded_at TEXT NOT NULL,
    data_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_driver_locations_tenant_driver
    ON driver_locations (tenant_id, driver_id, recorded_at DESC);

CREATE TABLE IF NOT EXISTS vehicles (
    tenant_id TEXT NOT NULL,
    vehicle_id TEXT NOT NULL,
    status TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, vehicle_id)
);

CREATE TABLE IF NOT EXISTS patients (
    tenant_id TEXT NOT NULL,
    patient_id TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, patient_id)
);

CREATE TABLE IF NOT EXISTS trips (
    tenant_id TEXT NOT NULL,
    trip_id TEXT NOT NULL,
    status TEXT NOT NULL,
    driver_id TEXT,
    scheduled_pickup_time TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, trip_id)
);

CREATE INDEX IF NOT EXISTS idx_trips_tenant_status ON trips (tenant_id, status);
CREATE INDEX IF NOT EXISTS idx_trips_tenant_driver ON trips (tenant_id, driver_id);
CREATE INDEX IF NOT EXISTS idx_trips_tenant_pickup ON trips (tenant_id, scheduled_pickup_time);

CREATE TABLE IF NOT EXISTS timeline (
    tenant_id TEXT NOT NULL,
    event_id TEXT NOT NULL,
    trip_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    actor TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    details_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, event_id)
);

CREATE INDEX IF NOT EXISTS idx_timeline_tenant_trip ON timeline (tenant_id, trip_id);

CREATE TABLE IF NOT EXISTS notifications (
    tenant_id TEXT NOT NULL,
    notification_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, notification_id)
);

CREATE INDEX IF NOT EXISTS idx_notifications_tenant_user
    ON notifications (tenant_id, user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS invoices (
    tenant_id TEXT NOT NULL,
    invoice_id TEXT NOT NULL,
    trip_id TEXT NOT NULL,
    status TEXT NOT NULL,
    billing_date TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, invoice_id)
);

CREATE INDEX IF NOT EXISTS idx_invoices_tenant_status ON invoices (tenant_id, status);
CREATE INDEX IF NOT EXISTS idx_invoices_tenant_trip ON invoices (tenant_id, trip_id);

CREATE TABLE IF NOT EXISTS pay_rates (
    tenant_id TEXT NOT NULL,
    driver_id TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, driver_id)
);

CREATE TABLE IF NOT EXISTS payroll_periods (
    tenant_id TEXT NOT NULL,
    period_id TEXT NOT NULL,
    start_date TEXT NOT NULL,
    status TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, period_id)
);

CREATE TABLE IF NOT EXISTS payroll_entries (
    tenant_id TEXT NOT NULL,
    entry_id TEXT NOT NULL,
    period_id TEXT NOT NULL,
    driver_id TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, entry_id)
);

CREATE INDEX IF NOT EXISTS idx_payroll_entries_tenant_period ON payroll_entries (tenant_id, period_id);

CREATE TABLE IF NOT EXISTS trip_confirmations (
    tenant_id TEXT NOT NULL,
    trip_id TEXT NOT NULL,
    status TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, trip_id)
);

CREATE TABLE IF NOT EXISTS call_events (
    tenant_id TEXT NOT NULL,
    call_sid TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, call_sid)
);

CREATE TABLE IF NOT EXISTS camera_devices (
    tenant_id TEXT NOT NULL,
    device_id TEXT NOT NULL,
    vehicle_id TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, device_id)
);

CREATE TABLE IF NOT EXISTS dash_camera_events (
    tenant_id TEXT NOT NULL,
    event_id TEXT NOT NULL,
    vehicle_id TEXT NOT NULL,
    driver_id TEXT,
    severity TEXT NOT NULL,
    event_timestamp TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, event_id)
);

CREATE INDEX IF NOT EXISTS idx_camera_events_tenant_time
    ON dash_camera_events (tenant_id, event_timestamp DESC);

CREATE TABLE IF NOT EXISTS safety_scores (
    tenant_id TEXT NOT NULL,
    driver_id TEXT NOT NULL,
    score_date TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, driver_id, score_date)
);

CREATE TABLE IF NOT EXISTS farmouts (
    tenant_id TEXT NOT NULL,
    farmout_id TEXT NOT NULL,
    trip_id TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, farmout_id)
);

CREATE TABLE IF NOT EXISTS idempotency (
    tenant_id TEXT NOT NULL,
    key_name TEXT NOT NULL,
    stored_at TEXT NOT NULL,
    response_json TEXT NOT NULL,
    PRIMARY KEY (tenant_id, key_name)
);
"""

# Conflict target for each JSON-document table.
_PRIMARY_KEYS: Dict[str, Sequence[str]] = {
    "profiles": ("tenant_id", "profile_id"),
    "vehicles": ("tenant_id", "vehicle_id"),
    "patients": ("tenant_id", "patient_id"),
    "trips": ("tenant_id", "trip_id"),
    "notifications": ("tenant_id", "notification_id"),
    "invoices": ("tenant_id", "invoice_id"),
    "pay_rates": ("tenant_id", "driver_id"),
    "payroll_periods": ("tenant_id", "period_id"),
    "payroll_entries": ("tenant_id", "entry_id"),
    "trip_confirmations": ("tenant_id", "trip_id"),
    "call_events": ("tenant_id", "call_sid"),
    "camera_devices": ("tenant_id", "device_id"),
    "dash_camera_events": ("tenant_id", "event_id"),
    "safety_scores": ("tenant_id", "driver_id", "score_date"),
    "farmouts": ("tenant_id", "farmout_id"),
}


class NemtStore:
    """Durable per-tenant record store.

    Each record is kept as a JSON document next to the handful of columns
    used for filtering. Every public method takes the store lock, so single
    calls are atomic; multi-call workflows are not.
    """

    _lock_registry: dict[str, RLock] = {}
    _lock_registry_guard = Lock()

    def __init__(self, db_path: str | None = None) -> None:
        settings = get_settings()
        path = (db_path or settings.nemt_db_path or "").strip() or "./data/nemt.db"

        self._db_path = Path(path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = self._get_shared_lock(str(self._db_path.resolve()))
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 30000")
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    @classmethod
    def _get_shared_lock(cls, key: str) -> RLock:
        with cls._lock_registry_guard:
            lock = cls._lock_registry.get(key)
            if lock is None:
                lock = RLock()
                cls._lock_registry[key] = lock
            return lock

    # ------------------------------------------------------------------ helpers

    def _put(self, table: str, columns: Dict[str, Any], data: Dict[str, Any]) -> None:
        row = dict(columns)
        row["data_json"] = _json_dumps(data)
        names = list(row.keys())
        conflict = _PRIMARY_KEYS[table]
        updates = ", ".join(f"{name} = excluded.{name}" for name in names if name not in conflict)
        self._conn.execute(
            f"""
            INSERT INTO {table} ({", ".join(names)})
            VALUES ({", ".join("?" for _ in names)})
            ON CONFLICT({", ".join(conflict)})
            DO UPDATE SET {updates}
            """,
            tuple(row[name] for name in names),
        )

    def _save(self, table: str, columns: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._put(table, columns, data)
            self._conn.commit()
        return data

    def _get(self, table: str, tenant_id: str, **keys: Any) -> Optional[Dict[str, Any]]:
        clauses = " AND ".join(f"{name} = ?" for name in keys)
        with self._lock:
            row = self._conn.execute(
                f"SELECT data_json FROM {table} WHERE tenant_id = ? AND {clauses}",
                (tenant_id, *keys.values()),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data_json"])

    def _select(
        self,
        table: str,
        tenant_id: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: str = "",
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        clauses = ["tenant_id = ?"]
        params: List[Any] = [tenant_id]
        for name, value in (filters or {}).items():
            if value is None:
                continue
            if isinstance(value, (list, tuple, set)):
                values = list(value)
                if not values:
                    return []
                clauses.append(f"{name} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            else:
                clauses.append(f"{name} = ?")
                params.append(value)
        sql = f"SELECT data_json FROM {table} WHERE {' AND '.join(clauses)}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        if limit:
            sql += f" LIMIT {int(limit)}"
        with self._lock:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [json.loads(row["data_json"]) for row in rows]

    # ---------------------------------------------------------------- sequences

    def next_sequence(self, tenant_id: str, key: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT next_value FROM sequences WHERE tenant_id = ? AND key_name = ?",
                (tenant_id, key),
            ).fetchone()
            if row is None:
                current = 1
                self._conn.execute(
                    "INSERT INTO sequences (tenant_id, key_name, next_value) VALUES (?, ?, ?)",
                    (tenant_id, key, current + 1),
                )
            else:
                current = int(row["next_value"])
                self._conn.execute(
                    "UPDATE sequences SET next_value = ? WHERE tenant_id = ? AND key_name = ?",
                    (current + 1, tenant_id, key),
                )
            self._conn.commit()
            return current

    def generate_id(self, tenant_id: str, key: str, prefix: str, width: int = 6) -> str:
        return f"{prefix}-{self.next_sequence(tenant_id, key):0{width}d}"

    def get_idempotent(self, tenant_id: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT response_json FROM idempotency WHERE tenant_id = ? AND key_name = ?",
                (tenant_id, key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["response_json"])

    def set_idempotent(self, tenant_id: str, key: str, response: Dict[str, Any]) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO idempotency (tenant_id, key_name, stored_at, response_json)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(tenant_id, key_name)
                DO UPDATE SET stored_at = excluded.stored_at, response_json = excluded.response_json
                """,
                (tenant_id, key, _utc_now_iso(), _json_dumps(response)),
            )
            self._conn.execute(
                """
                DELETE FROM idempotency
                WHERE tenant_id = ?
                  AND key_name NOT IN (
                    SELECT key_name FROM idempotency
                    WHERE tenant_id = ?
                    ORDER BY stored_at DESC
                    LIMIT 10000
                  )
                """,
                (tenant_id, tenant_id),
            )
            self._conn.commit()

    # ------------------------------------------------------- profiles / fleet

    def upsert_profile(self, tenant_id: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        profile["updated_at"] = _utc_now_iso()
        return self._save(
            "profiles",
            {
                "tenant_id": tenant_id,
                "profile_id": profile["profile_id"],
                "role": profile["role"],
                "status": profile["status"],
            },
            profile,
        )

    def get_profile(self, tenant_id: str, profile_id: str) -> Optional[Dict[str, Any]]:
        return self._get("profiles", tenant_id, profile_id=profile_id)

    def list_profiles(
        self,
        tenant_id: str,
        role: str | Iterable[str] | None = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        roles = list(role) if role is not None and not isinstance(role, str) else role
        return self._select(
            "profiles",
            tenant_id,
            {"role": roles, "status": status},
            order_by="profile_id",
        )

    def record_driver_location(
        self,
        tenant_id: str,
        driver_id: str,
        latitude: float,
        longitude: float,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        with self._lock:
            profile = self.get_profile(tenant_id, driver_id)
            if not profile or profile.get("role") != "driver":
                raise KeyError(driver_id)
            now = _utc_now_iso()
            profile["current_latitude"] = latitude
            profile["current_longitude"] = longitude
            profile["last_location_update"] = now
            profile["updated_at"] = now
            self._put(
                "profiles",
                {
                    "tenant_id": tenant_id,
                    "profile_id": driver_id,
                    "role": profile["role"],
                    "status": profile["status"],
                },
                profile,
            )
            history = {"latitude": latitude, "longitude": longitude, "timestamp": now, **(extra or {})}
            self._conn.execute(
                "INSERT INTO driver_locations (tenant_id, driver_id, recorded_at, data_json) VALUES (?, ?, ?, ?)",
                (tenant_id, driver_id, now, _json_dumps(history)),
            )
            self._conn.commit()
        return profile

    def list_driver_locations(self, tenant_id: str, driver_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT data_json FROM driver_locations
                WHERE tenant_id = ? AND driver_id = ?
                ORDER BY recorded_at DESC
                LIMIT ?
                """,
                (tenant_id, driver_id, int(limit)),
            ).fetchall()
        return [json.loads(row["data_json"]) for row in rows]

    def upsert_vehicle(self, tenant_id: str, vehicle: Dict[str, Any]) -> Dict[str, Any]:
        vehicle["updated_at"] = _utc_now_iso()
        return self._save(
            "vehicles",
            {"tenant_id": tenant_id, "vehicle_id": vehicle["vehicle_id"], "status": vehicle["status"]},
            vehicle,
        )

    def get_vehicle(self, tenant_id: str, vehicle_id: str) -> Optional[Dict[str, Any]]:
        return self._get("vehicles", tenant_id, vehicle_id=vehicle_id)

    def list_vehicles(self, tenant_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._select("vehicles", tenant_id, {"status": status}, order_by="vehicle_id")

    def upsert_patient(self, tenant_id: str, patient: Dict[str, Any]) -> Dict[str, Any]:
        return self._save(
            "patients",
            {"tenant_id": tenant_id, "patient_id": patient["patient_id"]},
            patient,
        )

    def get_patient(self, tenant_id: str, patient_id: str) -> Optional[Dict[str, Any]]:
        return self._get("patients", tenant_id, patient_id=patient_id)

    def list_patients(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self._select("patients", tenant_id, order_by="patient_id")

    # -------------------------------------------------------------------- trips

    def upsert_trip(self, tenant_id: str, trip: Dict[str, Any]) -> Dict[str, Any]:
        trip["updated_at"] = _utc_now_iso()
        return self._save(
            "trips",
            {
                "tenant_id": tenant_id,
                "trip_id": trip["trip_id"],
                "status": trip["status"],
                "driver_id": trip.get("driver_id"),
                "scheduled_pickup_time": _sort_key_time(trip["scheduled_pickup_time"]),
                "updated_at": trip["updated_at"],
            },
            trip,
        )

    def get_trip(self, tenant_id: str, trip_id: str) -> Optional[Dict[str, Any]]:
        return self._get("trips", tenant_id, trip_id=trip_id)

    def list_trips(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        driver_id: Optional[str] = None,
        trip_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        return self._select(
            "trips",
            tenant_id,
            {"status": status, "driver_id": driver_id, "trip_id": trip_ids},
            order_by="scheduled_pickup_time ASC, trip_id ASC",
        )

    def record_timeline_event(
        self,
        tenant_id: str,
        trip_id: str,
        event_type: str,
        actor: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        event = {
            "event_id": self.generate_id(tenant_id, "event", "EVT"),
            "trip_id": trip_id,
            "event_type": event_type,
            "actor": actor,
            "timestamp": _utc_now_iso(),
            "details": details or {},
        }
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO timeline (tenant_id, event_id, trip_id, event_type, actor, timestamp, details_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tenant_id,
                    event["event_id"],
                    trip_id,
                    event_type,
                    actor,
                    event["timestamp"],
                    _json_dumps(event["details"]),
                ),
            )
            self._conn.commit()
        return event

    def list_timeline(self, tenant_id: str, trip_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT event_id, trip_id, event_type, actor, timestamp, details_json
                FROM timeline
                WHERE tenant_id = ? AND trip_id = ?
                ORDER BY timestamp DESC, event_id DESC
                LIMIT 300
                """,
                (tenant_id, trip_id),
            ).fetchall()
        return [
            {
                "event_id": row["event_id"],
                "trip_id": row["trip_id"],
                "event_type": row["event_type"],
                "actor": row["actor"],
                "timestamp": row["timestamp"],
                "details": json.loads(row["details_json"]),
            }
            for row in rows
        ]

    # ------------------------------------------------------------ notifications

    def add_notification(
        self,
        tenant_id: str,
        user_id: str,
        message: str,
        trip_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        row = {
            "notification_id": self.generate_id(tenant_id, "notification", "NTF"),
            "user_id": user_id,
            "message": message,
            "status": "pending",
            "trip_id": trip_id,
            "created_at": _utc_now_iso(),
        }
        return self._save(
            "notifications",
            {
                "tenant_id": tenant_id,
                "notification_id": row["notification_id"],
                "user_id": user_id,
                "status": row["status"],
                "created_at": row["created_at"],
            },
            row,
        )

    def list_notifications(self, tenant_id: str, user_id: Optional[str] = None, limit: int = 200) -> List[Dict[str, Any]]:
        return self._select(
            "notifications",
            tenant_id,
            {"user_id": user_id},
            order_by="created_at DESC, notification_id DESC",
            limit=limit,
        )

    # ------------------------------------------------------------------ billing

    def upsert_invoice(self, tenant_id: str, invoice: Dict[str, Any]) -> Dict[str, Any]:
        invoice["updated_at"] = _utc_now_iso()
        return self._save(
            "invoices",
            {
                "tenant_id": tenant_id,
                "invoice_id": invoice["invoice_id"],
                "trip_id": invoice["trip_id"],
                "status": invoice["status"],
                "billing_date": str(invoice["billing_date"]),
            },
            invoice,
        )

    def get_invoice(self, tenant_id: str, invoice_id: str) -> Optional[Dict[str, Any]]:
        return self._get("invoices", tenant_id, invoice_id=invoice_id)

    def list_invoices(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        trip_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        return self._select(
            "invoices",
            tenant_id,
            {"status": status, "trip_id": trip_id},
            order_by="billing_date DESC, invoice_id DESC",
        )

    # ------------------------------------------------------------------ payroll

    def upsert_pay_rate(self, tenant_id: str, rate: Dict[str, Any]) -> Dict[str, Any]:
        rate["updated_at"] = _utc_now_iso()
        return self._save("pay_rates", {"tenant_id": tenant_id, "driver_id": rate["driver_id"]}, rate)

    def get_pay_rate(self, tenant_id: str, driver_id: str) -> Optional[Dict[str, Any]]:
        return self._get("pay_rates", tenant_id, driver_id=driver_id)

    def list_pay_rates(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self._select("pay_rates", tenant_id, order_by="driver_id")

    def save_payroll_run(
        self,
        tenant_id: str,
        period: Dict[str, Any],
        entries: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Persist a period and its entries in one transaction."""
        with self._lock:
            try:
                self._put(
                    "payroll_periods",
                    {
                        "tenant_id": tenant_id,
                        "period_id": period["period_id"],
                        "start_date": str(period["start_date"]),
                        "status": period["status"],
                    },
                    period,
                )
                for entry in entries:
                    self._put(
                        "payroll_entries",
                        {
                            "tenant_id": tenant_id,
                            "entry_id": entry["entry_id"],
                            "period_id": entry["period_id"],
                            "driver_id": entry["driver_id"],
                        },
                        entry,
                    )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                logger.error("Payroll run rollback", tenant_id=tenant_id, period_id=period.get("period_id"))
                raise
        return period

    def update_payroll_period(self, tenant_id: str, period: Dict[str, Any]) -> Dict[str, Any]:
        return self._save(
            "payroll_periods",
            {
                "tenant_id": tenant_id,
                "period_id": period["period_id"],
                "start_date": str(period["start_date"]),
                "status": period["status"],
            },
            period,
        )

    def get_payroll_period(self, tenant_id: str, period_id: str) -> Optional[Dict[str, Any]]:
        return self._get("payroll_periods", tenant_id, period_id=period_id)

    def list_payroll_periods(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self._select("payroll_periods", tenant_id, order_by="start_date DESC, period_id DESC")

    def list_payroll_entries(self, tenant_id: str, period_id: str) -> List[Dict[str, Any]]:
        return self._select("payroll_entries", tenant_id, {"period_id": period_id}, order_by="entry_id")

    # ------------------------------------------------------------ confirmations

    def upsert_confirmation(self, tenant_id: str, confirmation: Dict[str, Any]) -> Dict[str, Any]:
        confirmation["updated_at"] = _utc_now_iso()
        return self._save(
            "trip_confirmations",
            {
                "tenant_id": tenant_id,
                "trip_id": confirmation["trip_id"],
                "status": confirmation["confirmation_status"],
            },
            confirmation,
        )

    def get_confirmation(self, tenant_id: str, trip_id: str) -> Optional[Dict[str, Any]]:
        return self._get("trip_confirmations", tenant_id, trip_id=trip_id)

    def list_confirmations(self, tenant_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._select("trip_confirmations", tenant_id, {"status": status}, order_by="trip_id")

    def add_call_event(self, tenant_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        event.setdefault("created_at", _utc_now_iso())
        return self._save(
            "call_events",
            {
                "tenant_id": tenant_id,
                "call_sid": event["call_sid"],
                "status": event["status"],
                "created_at": event["created_at"],
            },
            event,
        )

    def get_call_event(self, tenant_id: str, call_sid: str) -> Optional[Dict[str, Any]]:
        return self._get("call_events", tenant_id, call_sid=call_sid)

    # ------------------------------------------------------------- dash camera

    def register_camera_device(self, tenant_id: str, device_id: str, vehicle_id: str) -> Dict[str, Any]:
        row = {"device_id": device_id, "vehicle_id": vehicle_id, "registered_at": _utc_now_iso()}
        return self._save(
            "camera_devices",
            {"tenant_id": tenant_id, "device_id": device_id, "vehicle_id": vehicle_id},
            row,
        )

    def get_camera_device(self, tenant_id: str, device_id: str) -> Optional[Dict[str, Any]]:
        return self._get("camera_devices", tenant_id, device_id=device_id)

    def add_dash_camera_event(self, tenant_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        return self._save(
            "dash_camera_events",
            {
                "tenant_id": tenant_id,
                "event_id": event["event_id"],
                "vehicle_id": event["vehicle_id"],
                "driver_id": event.get("driver_id"),
                "severity": event["severity"],
                "event_timestamp": event["event_timestamp"],
            },
            event,
        )

    def get_dash_camera_event(self, tenant_id: str, event_id: str) -> Optional[Dict[str, Any]]:
        return self._get("dash_camera_events", tenant_id, event_id=event_id)

    def list_dash_camera_events(
        self,
        tenant_id: str,
        driver_id: Optional[str] = None,
        vehicle_id: Optional[str] = None,
        severity: Optional[str] = None,
        limit: int = 200,
    ) -> List[Dict[str, Any]]:
        return self._select(
            "dash_camera_events",
            tenant_id,
            {"driver_id": driver_id, "vehicle_id": vehicle_id, "severity": severity},
            order_by="event_timestamp DESC",
            limit=limit,
        )

    def get_safety_score(self, tenant_id: str, driver_id: str, score_date: str) -> Optional[Dict[str, Any]]:
        return self._get("safety_scores", tenant_id, driver_id=driver_id, score_date=score_date)

    def upsert_safety_score(self, tenant_id: str, score: Dict[str, Any]) -> Dict[str, Any]:
        score["updated_at"] = _utc_now_iso()
        return self._save(
            "safety_scores",
            {"tenant_id": tenant_id, "driver_id": score["driver_id"], "score_date": str(score["date"])},
            score,
        )

    def list_safety_scores(self, tenant_id: str, driver_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._select(
            "safety_scores",
            tenant_id,
            {"driver_id": driver_id},
            order_by="score_date DESC, driver_id",
        )

    # ----------------------------------------------------------------- farmouts

    def upsert_farmout(self, tenant_id: str, farmout: Dict[str, Any]) -> Dict[str, Any]:
        farmout["updated_at"] = _utc_now_iso()
        return self._save(
            "farmouts",
            {
                "tenant_id": tenant_id,
                "farmout_id": farmout["farmout_id"],
                "trip_id": farmout["trip_id"],
                "status": farmout["status"],
                "created_at": str(farmout["created_at"]),
            },
            farmout,
        )

    def get_farmout(self, tenant_id: str, farmout_id: str) -> Optional[Dict[str, Any]]:
        return self._get("farmouts", tenant_id, farmout_id=farmout_id)

    def list_farmouts(self, tenant_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._select("farmouts", tenant_id, {"status": status}, order_by="created_at DESC")


store = NemtStore()
