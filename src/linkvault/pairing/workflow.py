"""Pairing workflow: from socket events to an archived credential bundle.

One workflow instance handles one pairing attempt, in QR or pairing-code
mode. The whole sequence is a single linear coroutine:

    INIT -> CONNECTING -> QR_ISSUED | CODE_ISSUED -> AUTHENTICATED
         -> ARCHIVING -> NOTIFYING -> DONE

Any failure moves the session to FAILED and cleans up. A recoverable
disconnect before authentication loops through RECONNECTING back to
CONNECTING a bounded number of times. A logged-out disconnect fails the
workflow wherever it happens.
"""

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Optional

from linkvault.archive import ArchiveClient
from linkvault.config import PairingConfig
from linkvault.credentials import CredentialStore
from linkvault.errors import (
    ArchiveUploadFailed,
    ConnectionFailed,
    CredentialsIncomplete,
    CredentialsNotFound,
    LinkVaultError,
    LoggedOut,
    NetworkError,
    NoCredentialsProduced,
    PairingCodeFailed,
    StorageError,
    WorkflowCancelled,
    WorkflowTimeout,
)
from linkvault.logging import short_id
from linkvault.notifications import NotificationDispatcher
from linkvault.pairing.qr_generator import QrGenerator
from linkvault.pairing.session import (
    IssuedArtifact,
    PairingMode,
    PairingSession,
    PairingState,
    ResponseLatch,
)
from linkvault.pairing.validation import (
    format_pairing_code,
    generate_session_id,
    validate_phone_number,
)
from linkvault.protocols import (
    ConnectionStatus,
    ConnectionUpdate,
    SocketFactory,
    WhatsAppSocket,
)
from linkvault.session_index import SessionIndex
from linkvault.session_registry import SessionRegistry
from linkvault.timers import TimerSet

logger = logging.getLogger(__name__)

ISSUE_TIMER = "issue-timeout"
AUTH_TIMER = "auth-timeout"


class _RecoverableDisconnect(Exception):
    """Connection closed before authentication with a non-terminal status."""

    def __init__(self, status_code: Optional[int]):
        super().__init__(f"connection closed (status {status_code})")
        self.status_code = status_code


class PairingWorkflow:
    """Orchestrates one pairing attempt.

    Usage:
        workflow = PairingWorkflow(
            mode=PairingMode.CODE,
            phone_number="15551234567",
            socket_factory=factory,
            archive=archive,
            registry=registry,
            settings=config.pairing,
            sessions_dir=config.sessions_dir,
        )
        artifact = await workflow.start()   # code or QR, exactly once
        final_state = await workflow.wait()  # DONE or FAILED
    """

    def __init__(
        self,
        *,
        mode: PairingMode,
        socket_factory: SocketFactory,
        archive: ArchiveClient,
        registry: SessionRegistry,
        settings: PairingConfig,
        sessions_dir: Path | str,
        phone_number: Optional[str] = None,
        session_id: Optional[str] = None,
        session_prefix: str = "",
        notifier: Optional[NotificationDispatcher] = None,
        index: Optional[SessionIndex] = None,
        store: Optional[CredentialStore] = None,
    ):
        """Initialize the workflow. Allocates nothing.

        Raises:
            InvalidPhoneNumber: CODE mode with a malformed number.
            InvalidSessionId: Custom session id with nothing usable in it.
        """
        phone = validate_phone_number(phone_number) if mode is PairingMode.CODE else None
        resolved_id = generate_session_id(session_prefix, session_id)

        self.session = PairingSession(session_id=resolved_id, mode=mode, phone_number=phone)
        self.settings = settings
        self.store = store or CredentialStore(
            Path(sessions_dir) / resolved_id,
            min_snapshot_size=settings.min_snapshot_size,
        )
        self.latch = ResponseLatch()

        self._socket_factory = socket_factory
        self._archive = archive
        self._registry = registry
        self._notifier = notifier
        self._index = index

        self._timers = TimerSet(f"pairing {short_id(resolved_id)}")
        self._socket: Optional[WhatsAppSocket] = None
        self._task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._abort_reason: Optional[LinkVaultError] = None
        self._code_requested = False
        self._finishing = False

    # -------- Public surface --------

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def state(self) -> PairingState:
        return self.session.state

    @property
    def failure(self) -> Optional[Exception]:
        return self.session.failure

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def launch(self) -> asyncio.Task:
        """Start the workflow in the background (once)."""
        if self._task is None:
            self._task = asyncio.create_task(
                self.run(), name=f"pairing-{short_id(self.session_id)}"
            )
        return self._task

    async def start(self) -> IssuedArtifact:
        """Launch the workflow and wait for the QR or pairing code.

        Returns:
            The first issued artifact.

        Raises:
            LinkVaultError: The failure that ended the workflow before an
                artifact was issued.
        """
        task = self.launch()
        await asyncio.wait({self.latch.future(), task}, return_when=asyncio.FIRST_COMPLETED)

        if self.latch.fired:
            return self.latch.artifact
        if isinstance(self.session.failure, LinkVaultError):
            raise self.session.failure
        raise ConnectionFailed("Workflow ended without issuing a pairing artifact")

    async def wait(self) -> PairingState:
        """Wait for the workflow to reach DONE or FAILED."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.session.state

    def cancel(self, reason: str = "Cancelled by request") -> bool:
        """Abort a running workflow. Cleanup runs before it stops.

        Returns:
            True if the workflow was still running.
        """
        if self.session.is_terminal or self._finishing:
            return False
        self._abort(WorkflowCancelled(reason))
        return True

    def describe(self) -> dict:
        """Status snapshot for the HTTP layer."""
        failure = self.session.failure
        return {
            "sessionId": self.session_id,
            "mode": self.session.mode.value,
            "state": self.session.state.name.lower(),
            "reconnects": self.session.reconnects,
            "locator": self.session.locator,
            "error": getattr(failure, "code", None) if failure else None,
        }

    # -------- Main sequence --------

    async def run(self) -> PairingState:
        """Run the workflow to completion.

        Never raises for workflow failures: they are recorded on the
        session and the state ends as FAILED.
        """
        if self._task is None:
            self._task = asyncio.current_task()

        try:
            await self._execute()
        except asyncio.CancelledError:
            reason = self._abort_reason
            await self._fail(reason or WorkflowCancelled("Workflow cancelled"))
            if reason is None:
                raise
        except LinkVaultError as e:
            await self._fail(e)
        except Exception as e:
            logger.exception(f"Unexpected error in pairing {short_id(self.session_id)}")
            await self._fail(ConnectionFailed(f"Unexpected error: {e}"))

        return self.session.state

    async def _execute(self) -> None:
        settings = self.settings
        logger.info(
            f"Pairing {short_id(self.session_id)} started ({self.session.mode.value} mode)"
        )
        if self._index is not None:
            await self._index.create(
                self.session_id, self.session.mode.value, self.session.phone_number
            )

        self._timers.schedule(
            ISSUE_TIMER,
            settings.issue_timeout,
            lambda: self._abort(WorkflowTimeout("No QR code or pairing code issued in time")),
        )

        socket, updates = await self._acquire()

        self._timers.cancel(ISSUE_TIMER)
        self._timers.cancel(AUTH_TIMER)
        self._transition(PairingState.AUTHENTICATED)
        logger.info(f"Pairing {short_id(self.session_id)} authenticated")
        self._watch_task = asyncio.create_task(self._watch(updates))

        snapshot = await self._wait_for_snapshot()

        self._transition(PairingState.ARCHIVING)
        locator = await self._archive_snapshot(snapshot)
        self.session.locator = locator

        self._transition(PairingState.NOTIFYING)
        if self._notifier is not None:
            await self._notifier.notify(socket, locator, self.session_id)

        await asyncio.sleep(settings.notify_grace)
        await self._finish()

    async def _acquire(self) -> tuple[WhatsAppSocket, AsyncIterator[ConnectionUpdate]]:
        """Connect until the phone confirms, reconnecting on recoverable drops.

        Returns:
            The authenticated socket and its (partially consumed) update stream.

        Raises:
            LoggedOut: Terminal disconnect.
            ConnectionFailed: Reconnect attempts exhausted.
        """
        settings = self.settings
        while True:
            self._transition(PairingState.CONNECTING)
            auth = await self.store.initialize()
            socket = await self._socket_factory(auth)
            self._socket = socket
            self._registry.put(self.session_id, socket)

            updates = socket.updates()
            try:
                await self._until_open(socket, updates)
                return socket, updates
            except _RecoverableDisconnect as e:
                await self._release_socket()
                if self.session.reconnects >= settings.reconnect_attempts:
                    raise ConnectionFailed(
                        f"Connection lost {self.session.reconnects + 1} times "
                        f"(last status {e.status_code})"
                    ) from e

                self.session.reconnects += 1
                self._transition(PairingState.RECONNECTING)
                logger.info(
                    f"Pairing {short_id(self.session_id)} disconnected "
                    f"(status {e.status_code}), reconnecting in {settings.reconnect_delay}s "
                    f"[{self.session.reconnects}/{settings.reconnect_attempts}]"
                )
                await asyncio.sleep(settings.reconnect_delay)

    async def _until_open(
        self, socket: WhatsAppSocket, updates: AsyncIterator[ConnectionUpdate]
    ) -> None:
        """Consume updates in order until the connection opens."""
        async for update in updates:
            if update.qr and self.session.mode is PairingMode.QR:
                await self._on_qr(update.qr)

            wants_code = update.qr is not None or update.connection is ConnectionStatus.CONNECTING
            if (
                wants_code
                and self.session.mode is PairingMode.CODE
                and not self._code_requested
                and not socket.registered
            ):
                await self._request_code(socket)

            if update.connection is ConnectionStatus.OPEN:
                return
            if update.connection is ConnectionStatus.CLOSE:
                if update.is_logged_out:
                    raise LoggedOut("Account logged out before pairing completed")
                raise _RecoverableDisconnect(update.status_code)

        raise _RecoverableDisconnect(None)

    async def _on_qr(self, payload: str) -> None:
        if self.latch.fired:
            # QR refresh after the response went out: nobody to show it to
            self.latch.attempts += 1
            logger.debug(f"Ignoring refreshed QR for {short_id(self.session_id)}")
            return

        data_url = await asyncio.to_thread(QrGenerator(payload).to_data_url)
        await self._issue(
            IssuedArtifact(
                session_id=self.session_id,
                mode=PairingMode.QR,
                qr=payload,
                qr_data_url=data_url,
            ),
            PairingState.QR_ISSUED,
        )

    async def _request_code(self, socket: WhatsAppSocket) -> None:
        self._code_requested = True
        await asyncio.sleep(self.settings.code_request_delay)
        try:
            raw_code = await socket.request_pairing_code(self.session.phone_number)
        except LinkVaultError:
            raise
        except Exception as e:
            raise PairingCodeFailed(f"Failed to get pairing code: {e}") from e
        if not raw_code:
            raise PairingCodeFailed("Protocol layer returned an empty pairing code")

        await self._issue(
            IssuedArtifact(
                session_id=self.session_id,
                mode=PairingMode.CODE,
                code=format_pairing_code(raw_code),
            ),
            PairingState.CODE_ISSUED,
        )

    async def _issue(self, artifact: IssuedArtifact, state: PairingState) -> None:
        """Hand the artifact to the HTTP caller, once."""
        if not self.latch.fire(artifact):
            logger.debug(f"Response already sent for {short_id(self.session_id)}")
            return

        self._transition(state)
        self._timers.cancel(ISSUE_TIMER)
        self._timers.schedule(
            AUTH_TIMER,
            self.settings.auth_timeout,
            lambda: self._abort(WorkflowTimeout("Pairing was not confirmed on the phone in time")),
        )
        if self._index is not None:
            await self._index.update(self.session_id, status="issued")
        logger.info(f"Pairing {short_id(self.session_id)}: {state.name.lower()}")

    async def _wait_for_snapshot(self) -> bytes:
        """Poll the credential store until a complete snapshot exists.

        Raises:
            NoCredentialsProduced: Attempts exhausted.
        """
        settings = self.settings
        await asyncio.sleep(settings.settle_delay)

        for attempt in range(1, settings.snapshot_attempts + 1):
            try:
                return await self.store.read_snapshot()
            except (CredentialsNotFound, CredentialsIncomplete, StorageError) as e:
                logger.debug(
                    f"Snapshot attempt {attempt}/{settings.snapshot_attempts} "
                    f"for {short_id(self.session_id)}: {e}"
                )
            if attempt < settings.snapshot_attempts:
                await asyncio.sleep(settings.snapshot_interval)

        raise NoCredentialsProduced(
            f"No complete credentials after {settings.snapshot_attempts} attempts"
        )

    async def _archive_snapshot(self, snapshot: bytes) -> str:
        """Upload the snapshot, retrying transient failures.

        Raises:
            ArchiveUploadFailed: Attempts exhausted or a non-transient error.
        """
        settings = self.settings
        name = f"{self.session_id}.json"
        last_error: Optional[Exception] = None

        for attempt in range(1, settings.upload_attempts + 1):
            try:
                return await self._archive.upload(snapshot, name)
            except NetworkError as e:
                last_error = e
                logger.warning(
                    f"Upload attempt {attempt}/{settings.upload_attempts} "
                    f"for {short_id(self.session_id)} failed: {e}"
                )
            except Exception as e:
                raise ArchiveUploadFailed(f"Upload rejected: {e}") from e

            if attempt < settings.upload_attempts:
                await asyncio.sleep(settings.upload_interval)

        raise ArchiveUploadFailed(
            f"Upload failed after {settings.upload_attempts} attempts"
        ) from last_error

    async def _watch(self, updates: AsyncIterator[ConnectionUpdate]) -> None:
        """Keep draining updates after authentication to catch a logout."""
        try:
            async for update in updates:
                if update.is_logged_out:
                    self._abort(LoggedOut("Account logged out after authentication"))
                    return
                if update.connection is ConnectionStatus.CLOSE:
                    logger.warning(
                        f"Connection for {short_id(self.session_id)} closed after "
                        f"authentication (status {update.status_code})"
                    )
                    return
        except Exception as e:
            logger.debug(f"Update stream for {short_id(self.session_id)} ended: {e}")

    # -------- Terminal states --------

    def _abort(self, failure: LinkVaultError) -> None:
        """Stop the main sequence with the given failure."""
        if self._finishing or self.session.is_terminal:
            return
        if self._abort_reason is None:
            self._abort_reason = failure
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _finish(self) -> None:
        self._finishing = True
        retain = self.settings.retain_sessions
        await self._cleanup(remove_credentials=not retain)
        self._transition(PairingState.DONE)

        if self._index is not None:
            await self._index.update(
                self.session_id, status="completed", locator=self.session.locator
            )
        logger.info(
            f"Pairing {short_id(self.session_id)} done"
            + (", credentials retained" if retain else "")
        )

    async def _fail(self, failure: LinkVaultError) -> None:
        self._finishing = True
        self.session.failure = failure
        if not self.session.is_terminal:
            self.session.transition_to(PairingState.FAILED)
        logger.warning(f"Pairing {short_id(self.session_id)} failed [{failure.code}]: {failure}")

        await self._cleanup(remove_credentials=True)
        if self._index is not None:
            await self._index.update(self.session_id, status="failed", error=failure.code)

    async def cleanup(self) -> None:
        """Release the socket and remove the credential directory."""
        await self._cleanup(remove_credentials=True)

    async def _cleanup(self, remove_credentials: bool) -> None:
        """Idempotent teardown."""
        self._timers.cancel_all()

        watch_task = self._watch_task
        self._watch_task = None
        if watch_task is not None and not watch_task.done():
            watch_task.cancel()

        await self._release_socket()

        if remove_credentials:
            try:
                await self.store.destroy()
            except StorageError as e:
                logger.error(f"Cleanup of {short_id(self.session_id)} failed: {e}")

    async def _release_socket(self) -> None:
        socket = self._socket
        self._socket = None
        if socket is None:
            return

        self._registry.remove(self.session_id, socket)
        try:
            await socket.close()
        except Exception as e:
            logger.debug(f"Error closing socket for {short_id(self.session_id)}: {e}")

    def _transition(self, state: PairingState) -> None:
        self.session.transition_to(state)
        logger.debug(f"Pairing {short_id(self.session_id)} -> {state.name}")
