"""Database management for RSS Audio Monitor."""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..exceptions import NotFoundError, StorageError
from ..models.download import DownloadStatus, QueueEntry
from ..models.episode import Episode, EpisodeStats
from ..models.subscription import Subscription, SubscriptionData


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime so that string order equals time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def _from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class DatabaseHandler:
    """SQLite store for subscriptions, episodes, the download queue and settings.

    Every public method opens its own connection, so the handler can be shared
    between the scheduler, feed checks and download workers. Each mutation is a
    single statement.
    """

    def __init__(self, db_path: Path):
        """Initialize database handler.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection

        Raises:
            StorageError: If SQLite rejects any statement
        """
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_database(self) -> None:
        """Initialize database schema."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("PRAGMA journal_mode = WAL")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    rss_url TEXT NOT NULL,
                    output_directory TEXT NOT NULL,
                    check_frequency_minutes INTEGER NOT NULL DEFAULT 60,
                    max_items_to_check INTEGER NOT NULL DEFAULT 10,
                    max_episodes INTEGER,
                    preferred_quality TEXT NOT NULL DEFAULT 'enclosure',
                    filename_format TEXT NOT NULL DEFAULT '{show}-{episode}',
                    enabled BOOLEAN NOT NULL DEFAULT 1,
                    last_checked_at TIMESTAMP,
                    last_success_at TIMESTAMP,
                    last_error TEXT,
                    total_episodes_found INTEGER NOT NULL DEFAULT 0,
                    total_downloads INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS episodes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    subscription_id INTEGER NOT NULL,
                    guid TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    pub_date TIMESTAMP,
                    audio_url TEXT NOT NULL,
                    audio_type TEXT,
                    audio_size_bytes INTEGER,
                    duration_seconds INTEGER,
                    image_url TEXT,
                    author TEXT,
                    download_status TEXT NOT NULL DEFAULT 'pending',
                    download_progress INTEGER NOT NULL DEFAULT 0,
                    download_path TEXT,
                    download_error TEXT,
                    download_attempts INTEGER NOT NULL DEFAULT 0,
                    download_started_at TIMESTAMP,
                    download_completed_at TIMESTAMP,
                    discovered_at TIMESTAMP NOT NULL,
                    FOREIGN KEY (subscription_id) REFERENCES subscriptions(id) ON DELETE CASCADE,
                    UNIQUE(subscription_id, guid)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS download_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    episode_id INTEGER NOT NULL UNIQUE,
                    priority INTEGER NOT NULL DEFAULT 0,
                    added_at TIMESTAMP NOT NULL,
                    FOREIGN KEY (episode_id) REFERENCES episodes(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_episodes_subscription ON episodes(subscription_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_episodes_status ON episodes(download_status)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_subscriptions_enabled ON subscriptions(enabled)")

    # Row conversion

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row['id'],
            name=row['name'],
            rss_url=row['rss_url'],
            output_directory=row['output_directory'],
            check_frequency_minutes=row['check_frequency_minutes'],
            max_items_to_check=row['max_items_to_check'],
            max_episodes=row['max_episodes'],
            preferred_quality=row['preferred_quality'],
            filename_format=row['filename_format'],
            enabled=bool(row['enabled']),
            last_checked_at=_from_db(row['last_checked_at']),
            last_success_at=_from_db(row['last_success_at']),
            last_error=row['last_error'],
            total_episodes_found=row['total_episodes_found'],
            total_downloads=row['total_downloads'],
            created_at=_from_db(row['created_at']),
            updated_at=_from_db(row['updated_at'])
        )

    @staticmethod
    def _row_to_episode(row: sqlite3.Row) -> Episode:
        return Episode(
            id=row['id'],
            subscription_id=row['subscription_id'],
            guid=row['guid'],
            title=row['title'],
            description=row['description'],
            pub_date=_from_db(row['pub_date']),
            audio_url=row['audio_url'],
            audio_type=row['audio_type'],
            audio_size_bytes=row['audio_size_bytes'],
            duration_seconds=row['duration_seconds'],
            image_url=row['image_url'],
            author=row['author'],
            download_status=DownloadStatus(row['download_status']),
            download_progress=row['download_progress'],
            download_path=row['download_path'],
            download_error=row['download_error'],
            download_attempts=row['download_attempts'],
            download_started_at=_from_db(row['download_started_at']),
            download_completed_at=_from_db(row['download_completed_at']),
            discovered_at=_from_db(row['discovered_at'])
        )

    # Subscription methods

    def create_subscription(self, data: SubscriptionData) -> Subscription:
        """Create a new, enabled subscription.

        Args:
            data: Validated subscription payload

        Returns:
            The stored Subscription
        """
        now = _to_db(utc_now())
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO subscriptions (
                    name, rss_url, output_directory, check_frequency_minutes,
                    max_items_to_check, max_episodes, preferred_quality,
                    filename_format, enabled, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
            """, (
                data.name,
                data.rss_url,
                data.output_directory,
                data.check_frequency_minutes,
                data.max_items_to_check,
                data.max_episodes,
                data.preferred_quality,
                data.filename_format,
                now,
                now
            ))
            subscription_id = cursor.lastrowid

        return self.get_subscription(subscription_id)

    def get_subscription(self, subscription_id: int) -> Subscription:
        """Get a subscription by ID.

        Raises:
            NotFoundError: If no such subscription exists
        """
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
            ).fetchone()

        if row is None:
            raise NotFoundError(f"Subscription with id {subscription_id} not found")
        return self._row_to_subscription(row)

    def list_subscriptions(self, enabled_only: bool = False) -> List[Subscription]:
        """List subscriptions, newest first.

        Args:
            enabled_only: Only return enabled subscriptions
        """
        query = "SELECT * FROM subscriptions"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY created_at DESC, id DESC"

        with self.get_connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def update_subscription(self, subscription_id: int, data: SubscriptionData) -> Subscription:
        """Replace the operator-editable fields of a subscription.

        Raises:
            NotFoundError: If no such subscription exists
        """
        with self.get_connection() as conn:
            cursor = conn.execute("""
                UPDATE subscriptions
                SET name = ?, rss_url = ?, output_directory = ?,
                    check_frequency_minutes = ?, max_items_to_check = ?,
                    max_episodes = ?, preferred_quality = ?, filename_format = ?,
                    updated_at = ?
                WHERE id = ?
            """, (
                data.name,
                data.rss_url,
                data.output_directory,
                data.check_frequency_minutes,
                data.max_items_to_check,
                data.max_episodes,
                data.preferred_quality,
                data.filename_format,
                _to_db(utc_now()),
                subscription_id
            ))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Subscription with id {subscription_id} not found")

        return self.get_subscription(subscription_id)

    def delete_subscription(self, subscription_id: int) -> None:
        """Delete a subscription; its episodes and queue entries cascade.

        Raises:
            NotFoundError: If no such subscription exists
        """
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Subscription with id {subscription_id} not found")

    def set_subscription_enabled(self, subscription_id: int, enabled: bool) -> None:
        """Enable or disable subscription polling.

        Raises:
            NotFoundError: If no such subscription exists
        """
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE subscriptions SET enabled = ?, updated_at = ? WHERE id = ?",
                (enabled, _to_db(utc_now()), subscription_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Subscription with id {subscription_id} not found")

    def get_subscriptions_to_check(self, now: Optional[datetime] = None) -> List[Subscription]:
        """Get enabled subscriptions whose poll interval has elapsed.

        Never-checked subscriptions come first, then the stalest.

        Args:
            now: Reference time (defaults to the current time)
        """
        now = now or utc_now()
        with self.get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM subscriptions
                WHERE enabled = 1
                  AND (last_checked_at IS NULL
                       OR (julianday(?) - julianday(last_checked_at)) * 24 * 60
                          >= check_frequency_minutes)
                ORDER BY last_checked_at IS NOT NULL, last_checked_at ASC, id ASC
            """, (_to_db(now),)).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def update_subscription_checked(
        self,
        subscription_id: int,
        new_episodes_count: int,
        error: Optional[str] = None
    ) -> None:
        """Record the outcome of a feed check.

        Success clears the error and adds to the episode counter; failure
        records the error and leaves counters alone. Either way
        last_checked_at advances.

        Args:
            subscription_id: Subscription ID
            new_episodes_count: Episodes discovered by this check
            error: Error text, or None on success
        """
        now = _to_db(utc_now())
        with self.get_connection() as conn:
            if error is None:
                conn.execute("""
                    UPDATE subscriptions
                    SET last_checked_at = ?,
                        last_success_at = ?,
                        last_error = NULL,
                        total_episodes_found = total_episodes_found + ?,
                        updated_at = ?
                    WHERE id = ?
                """, (now, now, new_episodes_count, now, subscription_id))
            else:
                conn.execute("""
                    UPDATE subscriptions
                    SET last_checked_at = ?,
                        last_error = ?,
                        updated_at = ?
                    WHERE id = ?
                """, (now, error, now, subscription_id))

    def increment_download_count(self, subscription_id: int) -> None:
        """Increment the completed-download counter of a subscription."""
        with self.get_connection() as conn:
            conn.execute("""
                UPDATE subscriptions
                SET total_downloads = total_downloads + 1, updated_at = ?
                WHERE id = ?
            """, (_to_db(utc_now()), subscription_id))

    # Episode methods

    def episode_exists(self, subscription_id: int, guid: str) -> bool:
        """Check whether a guid is already known for a subscription."""
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM episodes WHERE subscription_id = ? AND guid = ? LIMIT 1",
                (subscription_id, guid)
            ).fetchone()
        return row is not None

    def insert_episode(self, episode: Episode) -> Episode:
        """Insert a newly discovered episode in pending state.

        Args:
            episode: Episode to add (id, status and timestamps are assigned here)

        Returns:
            The stored Episode

        Raises:
            StorageError: If the (subscription_id, guid) pair already exists
        """
        with self.get_connection() as conn:
            cursor = conn.execute("""
                INSERT INTO episodes (
                    subscription_id, guid, title, description, pub_date,
                    audio_url, audio_type, audio_size_bytes, duration_seconds,
                    image_url, author, download_status, discovered_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                episode.subscription_id,
                episode.guid,
                episode.title,
                episode.description,
                _to_db(episode.pub_date),
                episode.audio_url,
                episode.audio_type,
                episode.audio_size_bytes,
                episode.duration_seconds,
                episode.image_url,
                episode.author,
                DownloadStatus.PENDING.value,
                _to_db(episode.discovered_at or utc_now())
            ))
            episode_id = cursor.lastrowid

        return self.get_episode(episode_id)

    def get_episode(self, episode_id: int) -> Episode:
        """Get an episode by ID.

        Raises:
            NotFoundError: If no such episode exists
        """
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM episodes WHERE id = ?", (episode_id,)).fetchone()

        if row is None:
            raise NotFoundError(f"Episode with id {episode_id} not found")
        return self._row_to_episode(row)

    def list_episodes(
        self,
        subscription_id: Optional[int] = None,
        status: Optional[DownloadStatus] = None
    ) -> List[Episode]:
        """List episodes, newest publication first (undated last).

        Args:
            subscription_id: Restrict to one subscription
            status: Restrict to one download status
        """
        query = "SELECT * FROM episodes"
        clauses = []
        params: list = []

        if subscription_id is not None:
            clauses.append("subscription_id = ?")
            params.append(subscription_id)
        if status is not None:
            clauses.append("download_status = ?")
            params.append(DownloadStatus(status).value)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY pub_date IS NULL, pub_date DESC, discovered_at DESC"

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_episode(row) for row in rows]

    def count_all_episodes(self, subscription_id: int) -> int:
        """Count episodes of a subscription in any status."""
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM episodes WHERE subscription_id = ?",
                (subscription_id,)
            ).fetchone()
        return row['count']

    def count_completed_episodes(self, subscription_id: int) -> int:
        """Count completed episodes of a subscription."""
        with self.get_connection() as conn:
            row = conn.execute("""
                SELECT COUNT(*) AS count FROM episodes
                WHERE subscription_id = ? AND download_status = ?
            """, (subscription_id, DownloadStatus.COMPLETED.value)).fetchone()
        return row['count']

    def get_oldest_completed_beyond_cap(self, subscription_id: int, cap: int) -> List[Episode]:
        """Get the completed episodes that exceed a retention cap.

        Oldest first: publication date ascending (unknown dates first), then
        discovery time ascending.

        Args:
            subscription_id: Subscription ID
            cap: Number of completed episodes to keep

        Returns:
            Episodes to prune (empty when within the cap)
        """
        excess = self.count_completed_episodes(subscription_id) - cap
        if excess <= 0:
            return []

        with self.get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM episodes
                WHERE subscription_id = ? AND download_status = ?
                ORDER BY pub_date ASC, discovered_at ASC, id ASC
                LIMIT ?
            """, (subscription_id, DownloadStatus.COMPLETED.value, excess)).fetchall()
        return [self._row_to_episode(row) for row in rows]

    def get_episode_stats(self, subscription_id: Optional[int] = None) -> EpisodeStats:
        """Get episode counts by download status.

        Args:
            subscription_id: Restrict to one subscription (default: all)
        """
        query = "SELECT download_status, COUNT(*) AS count FROM episodes"
        params: tuple = ()
        if subscription_id is not None:
            query += " WHERE subscription_id = ?"
            params = (subscription_id,)
        query += " GROUP BY download_status"

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        stats = EpisodeStats()
        for row in rows:
            setattr(stats, row['download_status'], row['count'])
            stats.total += row['count']
        return stats

    def mark_episode_downloading(self, episode_id: int) -> None:
        """Mark an episode as downloading and count the attempt."""
        with self.get_connection() as conn:
            conn.execute("""
                UPDATE episodes
                SET download_status = ?,
                    download_started_at = ?,
                    download_attempts = download_attempts + 1
                WHERE id = ?
            """, (DownloadStatus.DOWNLOADING.value, _to_db(utc_now()), episode_id))

    def update_episode_progress(self, episode_id: int, progress: int) -> None:
        """Persist download progress percentage."""
        with self.get_connection() as conn:
            conn.execute(
                "UPDATE episodes SET download_progress = ? WHERE id = ?",
                (progress, episode_id)
            )

    def mark_episode_completed(self, episode_id: int, file_path: str) -> None:
        """Mark an episode as completed at the given path."""
        with self.get_connection() as conn:
            conn.execute("""
                UPDATE episodes
                SET download_status = ?,
                    download_path = ?,
                    download_progress = 100,
                    download_completed_at = ?,
                    download_error = NULL
                WHERE id = ?
            """, (DownloadStatus.COMPLETED.value, file_path, _to_db(utc_now()), episode_id))

    def mark_episode_failed(self, episode_id: int, error: str) -> None:
        """Mark an episode as failed with an error message.

        Paused episodes keep their status and pause reason.
        """
        with self.get_connection() as conn:
            conn.execute("""
                UPDATE episodes
                SET download_status = ?, download_error = ?
                WHERE id = ? AND download_status != ?
            """, (DownloadStatus.FAILED.value, error, episode_id, DownloadStatus.PAUSED.value))

    def reset_episode(self, episode_id: int) -> None:
        """Reset an episode to pending and clear its download information.

        Raises:
            NotFoundError: If no such episode exists
        """
        with self.get_connection() as conn:
            cursor = conn.execute("""
                UPDATE episodes
                SET download_status = ?,
                    download_progress = 0,
                    download_path = NULL,
                    download_error = NULL,
                    download_started_at = NULL,
                    download_completed_at = NULL
                WHERE id = ?
            """, (DownloadStatus.PENDING.value, episode_id))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Episode with id {episode_id} not found")

    def pause_subscription_episodes(self, subscription_id: int, reason: str) -> int:
        """Pause pending and downloading episodes of a subscription.

        Returns:
            Number of episodes paused
        """
        with self.get_connection() as conn:
            cursor = conn.execute("""
                UPDATE episodes
                SET download_status = ?, download_error = ?
                WHERE subscription_id = ? AND download_status IN (?, ?)
            """, (
                DownloadStatus.PAUSED.value,
                reason,
                subscription_id,
                DownloadStatus.PENDING.value,
                DownloadStatus.DOWNLOADING.value
            ))
            return cursor.rowcount

    def delete_episode(self, episode_id: int) -> None:
        """Delete an episode record.

        Raises:
            NotFoundError: If no such episode exists
        """
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM episodes WHERE id = ?", (episode_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Episode with id {episode_id} not found")

    # Queue methods

    def add_to_queue(self, episode_id: int, priority: int = 0) -> None:
        """Add an episode to the persisted download queue (no-op if present)."""
        with self.get_connection() as conn:
            conn.execute("""
                INSERT OR IGNORE INTO download_queue (episode_id, priority, added_at)
                VALUES (?, ?, ?)
            """, (episode_id, priority, _to_db(utc_now())))

    def remove_from_queue(self, episode_id: int) -> None:
        """Remove an episode from the persisted download queue."""
        with self.get_connection() as conn:
            conn.execute("DELETE FROM download_queue WHERE episode_id = ?", (episode_id,))

    def list_queue(self) -> List[QueueEntry]:
        """List queue entries, highest priority then oldest first."""
        with self.get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM download_queue
                ORDER BY priority DESC, added_at ASC
            """).fetchall()
        return [
            QueueEntry(
                id=row['id'],
                episode_id=row['episode_id'],
                priority=row['priority'],
                added_at=_from_db(row['added_at'])
            )
            for row in rows
        ]

    def get_queue_size(self) -> int:
        """Count queue entries."""
        with self.get_connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM download_queue").fetchone()
        return row['count']

    def clear_queue(self) -> int:
        """Remove every queue entry.

        Returns:
            Number of entries removed
        """
        with self.get_connection() as conn:
            return conn.execute("DELETE FROM download_queue").rowcount

    def remove_subscription_from_queue(self, subscription_id: int) -> None:
        """Remove the queue entries of every episode of a subscription."""
        with self.get_connection() as conn:
            conn.execute("""
                DELETE FROM download_queue
                WHERE episode_id IN (SELECT id FROM episodes WHERE subscription_id = ?)
            """, (subscription_id,))

    # Settings methods

    def get_setting(self, key: str) -> Optional[str]:
        """Get a setting value, or None if unset."""
        with self.get_connection() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row['value'] if row else None

    def get_setting_int(self, key: str, default: int) -> int:
        """Get a setting as an integer, falling back to ``default``."""
        value = self.get_setting(key)
        try:
            return int(value) if value is not None else default
        except ValueError:
            return default

    def get_all_settings(self) -> Dict[str, str]:
        """Get every setting, keyed by name."""
        with self.get_connection() as conn:
            rows = conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
        return {row['key']: row['value'] for row in rows}

    def set_setting(self, key: str, value: str) -> None:
        """Insert or update a setting."""
        with self.get_connection() as conn:
            conn.execute("""
                INSERT INTO settings (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """, (key, value, _to_db(utc_now())))
