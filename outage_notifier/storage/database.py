"""SQLite database operations"""
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .models import Address, AddressBinding, GroupSchedule, ScheduleDay, TimeInterval, User
from ..utils.timezone import now_timestamp

LAST_ROLLOVER_KEY = "last_rollover_date"

_SCHEDULE_TABLES = {
    ScheduleDay.TODAY: "group_schedules",
    ScheduleDay.TOMORROW: "next_day_schedules",
}


def _stamp(checked_at: Optional[int]) -> int:
    return now_timestamp() if checked_at is None else checked_at


class Database:
    """SQLite store for address bindings, group schedules, users and warned flags"""
    
    def __init__(self, db_path: str = "data/bot.db"):
        """Initialize database connection"""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
    
    def _init_db(self):
        """Create tables if they don't exist"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            
            # Configured addresses and their discovered group
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS addresses (
                    address_key TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    city TEXT NOT NULL,
                    street TEXT NOT NULL,
                    house_num TEXT NOT NULL,
                    group_name TEXT,
                    group_last_checked INTEGER NOT NULL DEFAULT 0
                )
            """)
            
            # Live and staged (next day) schedules, one row per group
            for table in _SCHEDULE_TABLES.values():
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        group_name TEXT PRIMARY KEY,
                        intervals TEXT NOT NULL,
                        last_checked INTEGER NOT NULL DEFAULT 0
                    )
                """)
            
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id INTEGER PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    subscribed_address_key TEXT,
                    created_at INTEGER NOT NULL
                )
            """)
            
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS warned_users (
                    user_id INTEGER NOT NULL,
                    address_key TEXT NOT NULL,
                    outage_start_time TEXT NOT NULL,
                    warned_at INTEGER NOT NULL,
                    UNIQUE (user_id, address_key, outage_start_time)
                )
            """)
            
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS app_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            
            # Indexes for performance
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_addresses_group 
                ON addresses(group_name)
            """)
            
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_users_address 
                ON users(subscribed_address_key)
            """)
            
            conn.commit()
    
    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager"""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()
    
    # Addresses and bindings
    
    def sync_addresses(self, addresses: Sequence[Address]):
        """
        Make the addresses table match the configured addresses.
        
        Known bindings are kept; addresses that are no longer configured are removed.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            for address in addresses:
                cursor.execute("""
                    INSERT INTO addresses 
                    (address_key, display_name, city, street, house_num)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(address_key) DO UPDATE SET
                        display_name = excluded.display_name,
                        city = excluded.city,
                        street = excluded.street,
                        house_num = excluded.house_num
                """, (address.key, address.name, address.city, address.street, address.house_num))
            
            keys = [address.key for address in addresses]
            placeholders = ", ".join("?" for _ in keys)
            cursor.execute(
                f"DELETE FROM addresses WHERE address_key NOT IN ({placeholders})",
                keys
            )
            conn.commit()
    
    def get_bindings(
        self,
        address_keys: Optional[Iterable[str]] = None,
        day: ScheduleDay = ScheduleDay.TODAY
    ) -> List[AddressBinding]:
        """
        Get bindings together with the age of the bound group's schedule
        
        Args:
            address_keys: Restrict to these addresses (all addresses if None)
            day: Which schedule table supplies schedule_last_checked
        
        Returns:
            List of AddressBinding objects
        """
        table = _SCHEDULE_TABLES[day]
        query = f"""
            SELECT a.address_key, a.group_name, a.group_last_checked,
                   s.last_checked AS schedule_last_checked
            FROM addresses a
            LEFT JOIN {table} s ON s.group_name = a.group_name
        """
        params: List[str] = []
        if address_keys is not None:
            params = list(address_keys)
            if not params:
                return []
            query += f" WHERE a.address_key IN ({', '.join('?' for _ in params)})"
        query += " ORDER BY a.address_key"
        
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [
                AddressBinding(
                    address_key=row['address_key'],
                    group_name=row['group_name'],
                    group_last_checked=row['group_last_checked'],
                    schedule_last_checked=row['schedule_last_checked']
                )
                for row in cursor.fetchall()
            ]
    
    def get_group_for_address(self, address_key: str) -> Optional[str]:
        """Get the group an address is currently bound to"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT group_name FROM addresses WHERE address_key = ?",
                (address_key,)
            )
            row = cursor.fetchone()
            return row['group_name'] if row else None
    
    def update_binding(self, address_key: str, group_name: str, checked_at: Optional[int] = None):
        """Bind an address to a group and refresh the binding timestamp"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE addresses SET group_name = ?, group_last_checked = ?
                WHERE address_key = ?
            """, (group_name, _stamp(checked_at), address_key))
            conn.commit()
    
    def touch_binding(self, address_key: str, checked_at: Optional[int] = None):
        """Refresh the binding timestamp without changing the group"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE addresses SET group_last_checked = ?
                WHERE address_key = ? AND group_name IS NOT NULL
            """, (_stamp(checked_at), address_key))
            conn.commit()
    
    # Schedules
    
    def get_group_schedule(
        self,
        group_name: str,
        day: ScheduleDay = ScheduleDay.TODAY
    ) -> Optional[GroupSchedule]:
        """Get the cached schedule of a group for the given day"""
        table = _SCHEDULE_TABLES[day]
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT * FROM {table} WHERE group_name = ?",
                (group_name,)
            )
            row = cursor.fetchone()
            if row:
                return self._row_to_schedule(row)
            return None
    
    def save_group_schedule(
        self,
        group_name: str,
        intervals: Sequence[TimeInterval],
        day: ScheduleDay = ScheduleDay.TODAY,
        checked_at: Optional[int] = None
    ):
        """Insert or replace a group's schedule with a fresh timestamp"""
        table = _SCHEDULE_TABLES[day]
        payload = json.dumps([interval.to_pair() for interval in intervals])
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                INSERT OR REPLACE INTO {table} 
                (group_name, intervals, last_checked)
                VALUES (?, ?, ?)
            """, (group_name, payload, _stamp(checked_at)))
            conn.commit()
    
    def promote_next_day_schedules(self, rollover_date: str) -> int:
        """
        Replace live schedules with the staged next-day ones in a single transaction.
        
        Live schedules of groups without a staged schedule are kept but expired,
        the staging table is cleared, warned flags of earlier dates are
        deleted and the rollover date is recorded.
        
        Args:
            rollover_date: Local date (YYYY-MM-DD) the rollover belongs to
        
        Returns:
            Number of promoted schedules
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("""
                    UPDATE group_schedules SET last_checked = 0
                    WHERE group_name NOT IN (SELECT group_name FROM next_day_schedules)
                """)
                cursor.execute("""
                    INSERT OR REPLACE INTO group_schedules (group_name, intervals, last_checked)
                    SELECT group_name, intervals, last_checked FROM next_day_schedules
                """)
                promoted = cursor.rowcount
                cursor.execute("DELETE FROM next_day_schedules")
                cursor.execute(
                    "DELETE FROM warned_users WHERE outage_start_time < ?",
                    (rollover_date,)
                )
                cursor.execute(
                    "INSERT OR REPLACE INTO app_state (key, value) VALUES (?, ?)",
                    (LAST_ROLLOVER_KEY, rollover_date)
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            return promoted
    
    # Users
    
    def register_user(self, user_id: int, display_name: str) -> User:
        """Create a user on first contact, refreshing the display name otherwise"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO users (user_id, display_name, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET display_name = excluded.display_name
            """, (user_id, display_name, now_timestamp()))
            conn.commit()
        return self.get_user(user_id)
    
    def get_user(self, user_id: int) -> Optional[User]:
        """Get a user by ID"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            if row:
                return self._row_to_user(row)
            return None
    
    def set_user_address(self, user_id: int, address_key: Optional[str]):
        """Subscribe a user to an address, or unsubscribe with None"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "UPDATE users SET subscribed_address_key = ? WHERE user_id = ?",
                (address_key, user_id)
            )
            conn.commit()
    
    def get_users_for_address(self, address_key: str) -> List[User]:
        """Get users subscribed to an address"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM users WHERE subscribed_address_key = ? ORDER BY user_id",
                (address_key,)
            )
            return [self._row_to_user(row) for row in cursor.fetchall()]
    
    def get_users_for_group(self, group_name: str) -> List[User]:
        """Get users whose subscribed address is bound to a group"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT u.* FROM users u
                JOIN addresses a ON a.address_key = u.subscribed_address_key
                WHERE a.group_name = ?
                ORDER BY u.user_id
            """, (group_name,))
            return [self._row_to_user(row) for row in cursor.fetchall()]
    
    def get_all_users(self) -> List[User]:
        """Get every known user"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM users ORDER BY user_id")
            return [self._row_to_user(row) for row in cursor.fetchall()]
    
    # Warned flags
    
    def try_mark_warned(self, user_id: int, address_key: str, outage_start: str) -> bool:
        """
        Claim the warning for (user, address, outage start).
        
        Returns:
            True if this call created the flag, False if it already existed
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT OR IGNORE INTO warned_users 
                (user_id, address_key, outage_start_time, warned_at)
                VALUES (?, ?, ?, ?)
            """, (user_id, address_key, outage_start, now_timestamp()))
            conn.commit()
            return cursor.rowcount == 1
    
    def unmark_warned(self, user_id: int, address_key: str, outage_start: str):
        """Release a warning claim so a later sweep may retry it"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                DELETE FROM warned_users 
                WHERE user_id = ? AND address_key = ? AND outage_start_time = ?
            """, (user_id, address_key, outage_start))
            conn.commit()
    
    def is_warned(self, user_id: int, address_key: str, outage_start: str) -> bool:
        """Check if a warning has been sent for (user, address, outage start)"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT 1 FROM warned_users 
                WHERE user_id = ? AND address_key = ? AND outage_start_time = ?
            """, (user_id, address_key, outage_start))
            return cursor.fetchone() is not None
    
    def clear_warned_flags_for_group(self, group_name: str, date_prefix: Optional[str] = None) -> int:
        """
        Delete warned flags of addresses bound to a group

        Args:
            group_name: Group whose flags are deleted
            date_prefix: Only delete flags of this local date (YYYY-MM-DD)

        Returns:
            Number of deleted flags
        """
        query = """
            DELETE FROM warned_users
            WHERE address_key IN (SELECT address_key FROM addresses WHERE group_name = ?)
        """
        params = [group_name]
        if date_prefix:
            query += " AND outage_start_time LIKE ?"
            params.append(f"{date_prefix}%")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            return cursor.rowcount
    
    # Application state
    
    def get_state(self, key: str) -> Optional[str]:
        """Get a persisted application state value"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM app_state WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row['value'] if row else None
    
    def set_state(self, key: str, value: str):
        """Persist an application state value"""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT OR REPLACE INTO app_state (key, value) VALUES (?, ?)",
                (key, value)
            )
            conn.commit()
    
    def _row_to_schedule(self, row: sqlite3.Row) -> GroupSchedule:
        """Convert database row to GroupSchedule object"""
        return GroupSchedule(
            group_name=row['group_name'],
            intervals=[TimeInterval.from_pair(pair) for pair in json.loads(row['intervals'])],
            last_checked=row['last_checked']
        )
    
    def _row_to_user(self, row: sqlite3.Row) -> User:
        """Convert database row to User object"""
        return User(
            user_id=row['user_id'],
            display_name=row['display_name'],
            subscribed_address_key=row['subscribed_address_key']
        )
