"""
Ledger storage using SQLite.

Holds the account, its prepaid ledger entries ("payments"), the per-request
log and the admin credential row.

Consistency features:
- Foreign keys enforced on every connection
- Derived capacity (total/remaining/fully-utilized) computed on read, never stored
- Charge = select + conditional increment + log insert in one BEGIN IMMEDIATE transaction
- Conditional increment (used < total) as a second guard against over-draw
- Bounded retry of the whole charge on conflict (tenacity)

Concurrency:
- One short-lived connection per operation (safe across threads and tasks)
- WAL journal so readers never block the charging writer
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from usage_monitor.exceptions import (
    ChargeConflictError,
    InvalidUnitPriceError,
    NoCapacityError,
    NotProvisionedError,
    PersistenceError,
)
from usage_monitor.models.account import Account, AccountCreate, AccountUpdate, Admin
from usage_monitor.models.ledger import LedgerEntry, LedgerEntryCreate, from_cents, to_cents
from usage_monitor.models.usage import ChargeResult, LogEntry
from usage_monitor.observability.metrics import (
    track_charge,
    track_charge_conflict,
    track_capacity_rejection,
    track_persistence_failure,
)

logger = logging.getLogger(__name__)

# A ledger entry has capacity while used_requests < floor(amount / unit_price).
# Both money columns are integer cents, so "/" is exact integer division.
HAS_CAPACITY_SQL = "used_requests < amount_cents / unit_price_cents"

SELECT_CHARGEABLE_SQL = f"""
    SELECT * FROM ledger_entries
    WHERE account_id = ? AND {HAS_CAPACITY_SQL}
    ORDER BY created_at ASC, entry_id ASC
    LIMIT 1
"""

INSERT_LOG_SQL = """
    INSERT INTO log_entries (
        account_id, ledger_entry_id, path, method,
        status_code, duration_seconds, request_time
    ) VALUES (?, ?, ?, ?, ?, ?, ?)
"""


def _to_db_time(value: datetime) -> str:
    """Serialize a timestamp as fixed-width UTC ISO 8601 (sortable as text)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class LedgerDatabase:
    """
    Account, ledger and request log storage.

    Every public method opens its own connection, so one instance can be
    shared by concurrent request handlers.
    """

    def __init__(
        self,
        db_path: str = "./data/usage_monitor.db",
        busy_timeout_seconds: float = 30.0,
        max_charge_attempts: int = 5,
        charge_retry_max_wait_ms: float = 25.0,
        log_rejected_requests: bool = True,
    ):
        """
        Initialize ledger database.

        Args:
            db_path: Path to SQLite database file
            busy_timeout_seconds: Wait on a locked database before failing
            max_charge_attempts: Charge attempts before rejecting as no capacity
            charge_retry_max_wait_ms: Upper bound of the jittered wait between attempts
            log_rejected_requests: Default policy for logging capacity rejections
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_seconds = busy_timeout_seconds
        self.max_charge_attempts = max_charge_attempts
        self.charge_retry_max_wait_ms = charge_retry_max_wait_ms
        self.log_rejected_requests = log_rejected_requests
        self._initialized = False

    async def initialize(self) -> None:
        """
        Initialize database schema.

        Idempotent - safe to call multiple times.
        """
        if self._initialized:
            return

        logger.info(f"Initializing ledger database at {self.db_path}")

        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute("PRAGMA foreign_keys = ON")

            # WAL lets dashboards read while a charge holds the write lock
            conn.execute("PRAGMA journal_mode = WAL")

            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ledger_entries (
                    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL,
                    amount_cents INTEGER NOT NULL,
                    unit_price_cents INTEGER NOT NULL,
                    used_requests INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,

                    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
                        ON DELETE CASCADE,
                    CHECK (amount_cents >= 0),
                    CHECK (unit_price_cents > 0),
                    CHECK (used_requests >= 0),
                    CHECK (used_requests <= amount_cents / unit_price_cents)
                );

                CREATE TABLE IF NOT EXISTS log_entries (
                    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL,
                    ledger_entry_id INTEGER,
                    path TEXT NOT NULL,
                    method TEXT NOT NULL,
                    status_code INTEGER NOT NULL,
                    duration_seconds REAL NOT NULL,
                    request_time TEXT NOT NULL,

                    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
                        ON DELETE CASCADE,
                    FOREIGN KEY (ledger_entry_id) REFERENCES ledger_entries(entry_id)
                        ON DELETE SET NULL
                );

                CREATE TABLE IF NOT EXISTS admins (
                    admin_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_log_entries_account ON log_entries(account_id);
                CREATE INDEX IF NOT EXISTS idx_log_entries_ledger_entry
                    ON log_entries(ledger_entry_id);
                CREATE INDEX IF NOT EXISTS idx_log_entries_request_time
                    ON log_entries(request_time);
                CREATE INDEX IF NOT EXISTS idx_ledger_entries_account
                    ON ledger_entries(account_id);
                """
            )

            conn.commit()
            logger.info("Ledger database initialized successfully")
            self._initialized = True

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise
        finally:
            conn.close()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a short-lived autocommit connection."""
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_seconds,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside BEGIN IMMEDIATE ... COMMIT, rolling back on any error."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            account_id=row["account_id"],
            name=row["name"],
            email=row["email"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_ledger_entry(row: sqlite3.Row) -> LedgerEntry:
        return LedgerEntry(
            entry_id=row["entry_id"],
            account_id=row["account_id"],
            amount=from_cents(row["amount_cents"]),
            unit_price=from_cents(row["unit_price_cents"]),
            used_requests=row["used_requests"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_log_entry(row: sqlite3.Row) -> LogEntry:
        return LogEntry(
            log_id=row["log_id"],
            account_id=row["account_id"],
            ledger_entry_id=row["ledger_entry_id"],
            path=row["path"],
            method=row["method"],
            status_code=row["status_code"],
            duration_seconds=row["duration_seconds"],
            request_time=datetime.fromisoformat(row["request_time"]),
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def create_account(
        self,
        account_create: AccountCreate,
        initial_payment: LedgerEntryCreate | None = None,
    ) -> Account | None:
        """
        Provision the account, optionally with its first ledger entry.

        Both rows are written in one transaction; if the ledger entry is
        rejected the account is rolled back too.

        Args:
            account_create: Account data
            initial_payment: Optional first purchase of capacity

        Returns:
            Account: Created account, or None if an account already exists

        Raises:
            InvalidUnitPriceError: If initial_payment has unit price <= 0
        """
        now = datetime.now(UTC)

        with self._transaction() as conn:
            existing = conn.execute("SELECT account_id FROM accounts LIMIT 1").fetchone()
            if existing:
                logger.warning(
                    "Account creation refused: an account is already provisioned",
                    extra={"account_id": existing["account_id"]},
                )
                return None

            cursor = conn.execute(
                "INSERT INTO accounts (name, email, created_at) VALUES (?, ?, ?)",
                (account_create.name, account_create.email, _to_db_time(now)),
            )
            account_id = cursor.lastrowid

            if initial_payment is not None:
                self._insert_ledger_entry(conn, account_id, initial_payment, now)

        logger.info(f"Created account: {account_id}")

        return Account(
            account_id=account_id,
            name=account_create.name,
            email=account_create.email,
            created_at=now,
        )

    async def get_account(self) -> Account | None:
        """
        Get the provisioned account.

        Returns:
            Account or None if none has been created yet
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM accounts ORDER BY account_id ASC LIMIT 1"
            ).fetchone()

        return self._row_to_account(row) if row else None

    async def get_account_by_id(self, account_id: int) -> Account | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE account_id = ?", (account_id,)
            ).fetchone()

        return self._row_to_account(row) if row else None

    async def update_account(self, account_id: int, update: AccountUpdate) -> Account | None:
        """
        Update account metadata.

        Args:
            account_id: Account to update
            update: Fields to update

        Returns:
            Updated account or None if not found
        """
        updates = []
        params: list = []

        if update.name is not None:
            updates.append("name = ?")
            params.append(update.name)
        if update.email is not None:
            updates.append("email = ?")
            params.append(update.email)

        if not updates:
            return await self.get_account_by_id(account_id)

        params.append(account_id)
        query = f"UPDATE accounts SET {', '.join(updates)} WHERE account_id = ?"

        with self._transaction() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                return None

        logger.info(
            "Updated account",
            extra={"account_id": account_id, "fields": update.model_dump(exclude_none=True)},
        )
        return await self.get_account_by_id(account_id)

    # ------------------------------------------------------------------
    # Ledger entries
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_ledger_entry(
        conn: sqlite3.Connection,
        account_id: int,
        payment: LedgerEntryCreate,
        created_at: datetime,
    ) -> LedgerEntry:
        unit_price_cents = to_cents(payment.unit_price)
        if unit_price_cents <= 0:
            raise InvalidUnitPriceError(payment.unit_price)

        cursor = conn.execute(
            """
            INSERT INTO ledger_entries (
                account_id, amount_cents, unit_price_cents, used_requests, created_at
            ) VALUES (?, ?, ?, 0, ?)
            """,
            (account_id, to_cents(payment.amount), unit_price_cents, _to_db_time(created_at)),
        )

        return LedgerEntry(
            entry_id=cursor.lastrowid,
            account_id=account_id,
            amount=from_cents(to_cents(payment.amount)),
            unit_price=from_cents(unit_price_cents),
            used_requests=0,
            created_at=created_at,
        )

    async def add_ledger_entry(self, account_id: int, payment: LedgerEntryCreate) -> LedgerEntry:
        """
        Add a purchase of capacity to an account.

        Args:
            account_id: Owning account
            payment: Amount and unit price

        Returns:
            LedgerEntry: Created entry with derived capacity

        Raises:
            InvalidUnitPriceError: If unit price <= 0
            NotProvisionedError: If the account does not exist
        """
        if to_cents(payment.unit_price) <= 0:
            raise InvalidUnitPriceError(payment.unit_price)

        with self._transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM accounts WHERE account_id = ?", (account_id,)
            ).fetchone()
            if not exists:
                raise NotProvisionedError(f"Account {account_id} does not exist")

            entry = self._insert_ledger_entry(conn, account_id, payment, datetime.now(UTC))

        logger.info(
            "Added ledger entry",
            extra={
                "account_id": account_id,
                "entry_id": entry.entry_id,
                "amount": str(entry.amount),
                "unit_price": str(entry.unit_price),
                "total_requests": entry.total_requests,
            },
        )
        return entry

    async def get_ledger_entry(self, entry_id: int) -> LedgerEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM ledger_entries WHERE entry_id = ?", (entry_id,)
            ).fetchone()

        return self._row_to_ledger_entry(row) if row else None

    async def list_ledger_entries(self, account_id: int) -> list[LedgerEntry]:
        """List an account's ledger entries, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM ledger_entries
                WHERE account_id = ?
                ORDER BY created_at ASC, entry_id ASC
                """,
                (account_id,),
            ).fetchall()

        return [self._row_to_ledger_entry(row) for row in rows]

    async def has_capacity(self, account_id: int) -> bool:
        """True iff at least one ledger entry of the account has remaining capacity."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT EXISTS (SELECT 1 FROM ledger_entries "
                f"WHERE account_id = ? AND {HAS_CAPACITY_SQL}) AS has_capacity",
                (account_id,),
            ).fetchone()

        return bool(row["has_capacity"])

    async def select_chargeable(self, account_id: int) -> LedgerEntry | None:
        """The oldest ledger entry with remaining capacity, or None."""
        with self._connect() as conn:
            row = conn.execute(SELECT_CHARGEABLE_SQL, (account_id,)).fetchone()

        return self._row_to_ledger_entry(row) if row else None

    # ------------------------------------------------------------------
    # Charge and log
    # ------------------------------------------------------------------

    def _charge_once(
        self,
        account_id: int,
        path: str,
        method: str,
        status_code: int,
        duration_seconds: float,
        request_time: datetime,
    ) -> ChargeResult | None:
        """
        One attempt at select + conditional increment + log insert.

        Returns:
            ChargeResult, or None if no entry has capacity

        Raises:
            ChargeConflictError: Lost a race on the selected entry, or the database was locked
            NotProvisionedError: If the account does not exist
            PersistenceError: Any other storage failure
        """
        try:
            with self._transaction() as conn:
                account = conn.execute(
                    "SELECT 1 FROM accounts WHERE account_id = ?", (account_id,)
                ).fetchone()
                if not account:
                    raise NotProvisionedError(f"Account {account_id} does not exist")

                row = conn.execute(SELECT_CHARGEABLE_SQL, (account_id,)).fetchone()
                if row is None:
                    return None

                cursor = conn.execute(
                    f"""
                    UPDATE ledger_entries
                    SET used_requests = used_requests + 1
                    WHERE entry_id = ? AND {HAS_CAPACITY_SQL}
                    """,
                    (row["entry_id"],),
                )
                if cursor.rowcount != 1:
                    raise ChargeConflictError(
                        f"Ledger entry {row['entry_id']} was exhausted concurrently"
                    )

                log_cursor = conn.execute(
                    INSERT_LOG_SQL,
                    (
                        account_id,
                        row["entry_id"],
                        path,
                        method,
                        status_code,
                        duration_seconds,
                        _to_db_time(request_time),
                    ),
                )

                total = row["amount_cents"] // row["unit_price_cents"]
                return ChargeResult(
                    ledger_entry_id=row["entry_id"],
                    log_id=log_cursor.lastrowid,
                    remaining_requests=total - row["used_requests"] - 1,
                )

        except sqlite3.Error as e:
            # Includes "database is locked" once busy_timeout_seconds has elapsed
            track_persistence_failure("charge")
            raise PersistenceError(f"Failed to record charge: {e}") from e

    def _log_conflict(self, retry_state: RetryCallState) -> None:
        track_charge_conflict()
        logger.warning(
            "Charge conflict, retrying selection",
            extra={
                "attempt": retry_state.attempt_number,
                "max_attempts": self.max_charge_attempts,
                "error": str(retry_state.outcome.exception()) if retry_state.outcome else None,
            },
        )

    async def record_request(
        self,
        account_id: int,
        path: str,
        method: str,
        status_code: int,
        duration_seconds: float,
        request_time: datetime | None = None,
        log_rejected: bool | None = None,
    ) -> ChargeResult:
        """
        Charge one request to the oldest ledger entry with capacity and log it.

        The increment and the log row referencing the charged entry are
        committed together. Conflicts are retried against the current state
        up to max_charge_attempts, then rejected as no capacity.

        Args:
            account_id: Account to charge
            path: Request path
            method: HTTP method
            status_code: Recorded outcome
            duration_seconds: Elapsed time of the guarded operation
            request_time: When the request started (default: now)
            log_rejected: Override the rejected-request logging policy

        Returns:
            ChargeResult: Charged entry id, log id and remaining capacity on that entry

        Raises:
            NoCapacityError: No entry has capacity, or retries were exhausted
            NotProvisionedError: If the account does not exist
            PersistenceError: Storage failure (fail-closed)
        """
        request_time = request_time or datetime.now(UTC)
        if log_rejected is None:
            log_rejected = self.log_rejected_requests

        result: ChargeResult | None = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_charge_attempts),
                wait=wait_random(0, self.charge_retry_max_wait_ms / 1000),
                retry=retry_if_exception_type(ChargeConflictError),
                before_sleep=self._log_conflict,
                reraise=True,
            ):
                with attempt:
                    result = self._charge_once(
                        account_id, path, method, status_code, duration_seconds, request_time
                    )
        except ChargeConflictError:
            logger.warning(
                "Charge retries exhausted, rejecting as no capacity",
                extra={"account_id": account_id, "attempts": self.max_charge_attempts},
            )
            result = None

        if result is None:
            track_capacity_rejection()
            if log_rejected:
                await self.record_unattributed_request(
                    account_id, path, method, status_code, duration_seconds, request_time
                )
            raise NoCapacityError(account_id)

        track_charge()
        logger.debug(
            "Request charged",
            extra={
                "account_id": account_id,
                "ledger_entry_id": result.ledger_entry_id,
                "log_id": result.log_id,
                "remaining_requests": result.remaining_requests,
            },
        )
        return result

    async def record_unattributed_request(
        self,
        account_id: int,
        path: str,
        method: str,
        status_code: int,
        duration_seconds: float,
        request_time: datetime | None = None,
    ) -> int:
        """
        Log a request that consumed no capacity (ledger_entry_id is NULL).

        Returns:
            int: The new log id

        Raises:
            PersistenceError: Storage failure
        """
        request_time = request_time or datetime.now(UTC)
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    INSERT_LOG_SQL,
                    (
                        account_id,
                        None,
                        path,
                        method,
                        status_code,
                        duration_seconds,
                        _to_db_time(request_time),
                    ),
                )
                return cursor.lastrowid
        except sqlite3.Error as e:
            track_persistence_failure("log")
            raise PersistenceError(f"Failed to record request log: {e}") from e

    # ------------------------------------------------------------------
    # Log queries
    # ------------------------------------------------------------------

    @staticmethod
    def _time_filters(
        from_time: datetime | None,
        to_time: datetime | None,
        account_id: int | None = None,
    ) -> tuple[str, list]:
        clauses = []
        params: list = []
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if from_time is not None:
            clauses.append("request_time >= ?")
            params.append(_to_db_time(from_time))
        if to_time is not None:
            clauses.append("request_time <= ?")
            params.append(_to_db_time(to_time))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    async def get_logs(
        self,
        account_id: int | None = None,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[LogEntry], int]:
        """
        Page through request logs, most recent first.

        Args:
            account_id: Restrict to one account (optional)
            from_time: Inclusive lower bound (optional)
            to_time: Inclusive upper bound (optional)
            page: 1-based page number
            page_size: Rows per page (1-1000)

        Returns:
            tuple: (entries, total_count matching the filters)
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if not 1 <= page_size <= 1000:
            raise ValueError(f"page_size must be between 1 and 1000, got {page_size}")

        where, params = self._time_filters(from_time, to_time, account_id)

        with self._connect() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) AS total FROM log_entries {where}", params
            ).fetchone()["total"]

            rows = conn.execute(
                f"""
                SELECT * FROM log_entries {where}
                ORDER BY request_time DESC, log_id DESC
                LIMIT ? OFFSET ?
                """,
                [*params, page_size, (page - 1) * page_size],
            ).fetchall()

        return [self._row_to_log_entry(row) for row in rows], total

    async def get_error_logs(
        self,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
    ) -> list[LogEntry]:
        """Logs with status >= 400, most recent first."""
        where, params = self._time_filters(from_time, to_time)
        where = f"{where} AND status_code >= 400" if where else "WHERE status_code >= 400"

        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM log_entries {where} ORDER BY request_time DESC, log_id DESC",
                params,
            ).fetchall()

        return [self._row_to_log_entry(row) for row in rows]

    async def get_total_request_count(self, account_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM log_entries WHERE account_id = ?", (account_id,)
            ).fetchone()
        return row["total"]

    async def fetch_logs_between(
        self,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        account_id: int | None = None,
    ) -> list[LogEntry]:
        """All logs in a window, oldest first (reporting input)."""
        where, params = self._time_filters(from_time, to_time, account_id)

        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM log_entries {where} ORDER BY request_time ASC, log_id ASC",
                params,
            ).fetchall()

        return [self._row_to_log_entry(row) for row in rows]

    # ------------------------------------------------------------------
    # Admins
    # ------------------------------------------------------------------

    async def has_admin(self) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT EXISTS (SELECT 1 FROM admins) AS has_admin").fetchone()
        return bool(row["has_admin"])

    async def insert_admin(self, username: str, password_hash: str) -> bool:
        """
        Create the admin row if none exists.

        The existence check and the insert share one transaction, so two
        concurrent setups cannot both succeed.

        Returns:
            bool: True if created, False if an admin already exists
        """
        try:
            with self._transaction() as conn:
                existing = conn.execute("SELECT 1 FROM admins LIMIT 1").fetchone()
                if existing:
                    return False

                conn.execute(
                    "INSERT INTO admins (username, password_hash, created_at) VALUES (?, ?, ?)",
                    (username, password_hash, _to_db_time(datetime.now(UTC))),
                )
        except sqlite3.IntegrityError:
            return False

        logger.info("Created admin account", extra={"username": username})
        return True

    async def get_admin(self, username: str) -> Admin | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM admins WHERE username = ?", (username,)
            ).fetchone()

        if not row:
            return None

        return Admin(
            admin_id=row["admin_id"],
            username=row["username"],
            password_hash=row["password_hash"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


# Global instance
_db: LedgerDatabase | None = None


async def get_ledger_db() -> LedgerDatabase:
    """
    Get global ledger database instance.

    Returns:
        LedgerDatabase: Initialized database
    """
    global _db
    if _db is None:
        from usage_monitor.config import get_settings

        settings = get_settings()
        _db = LedgerDatabase(
            db_path=settings.storage.db_path,
            busy_timeout_seconds=settings.storage.busy_timeout_seconds,
            max_charge_attempts=settings.metering.max_charge_attempts,
            charge_retry_max_wait_ms=settings.metering.charge_retry_max_wait_ms,
            log_rejected_requests=settings.metering.log_rejected_requests,
        )
        await _db.initialize()
    return _db


def set_ledger_db(db: LedgerDatabase | None) -> None:
    """Replace the global instance (application startup and tests)."""
    global _db
    _db = db
