"""Pairing manager owns every running pairing workflow."""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from linkvault.archive import ArchiveClient
from linkvault.config import Config, PairingConfig
from linkvault.errors import SessionBusy
from linkvault.logging import short_id
from linkvault.notifications import NotificationDispatcher
from linkvault.pairing.session import IssuedArtifact, PairingMode
from linkvault.pairing.workflow import PairingWorkflow
from linkvault.protocols import SocketFactory
from linkvault.session_index import SessionIndex
from linkvault.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class PairingManager:
    """Starts pairing workflows and tracks the ones still running.

    A session id maps to at most one running workflow. Finished workflows
    drop out of the table on their own.
    """

    def __init__(
        self,
        socket_factory: SocketFactory,
        archive: ArchiveClient,
        registry: SessionRegistry,
        settings: PairingConfig,
        sessions_dir: Path | str,
        session_prefix: str = "",
        notifier: Optional[NotificationDispatcher] = None,
        index: Optional[SessionIndex] = None,
    ):
        """Initialize pairing manager.

        Args:
            socket_factory: Opens protocol connections.
            archive: Remote archive for finished credential bundles.
            registry: Shared registry of live handles.
            settings: Workflow timing and retry bounds.
            sessions_dir: Parent directory of per-session credential dirs.
            session_prefix: Prefix for generated session ids.
            notifier: Sends the locator to the paired account.
            index: Session records.
        """
        self.socket_factory = socket_factory
        self.archive = archive
        self.registry = registry
        self.settings = settings
        self.sessions_dir = Path(sessions_dir)
        self.session_prefix = session_prefix
        self.notifier = notifier
        self.index = index

        self._workflows: Dict[str, PairingWorkflow] = {}

    @classmethod
    def from_config(
        cls,
        config: Config,
        socket_factory: SocketFactory,
        archive: ArchiveClient,
        registry: SessionRegistry,
        index: Optional[SessionIndex] = None,
    ) -> "PairingManager":
        return cls(
            socket_factory=socket_factory,
            archive=archive,
            registry=registry,
            settings=config.pairing,
            sessions_dir=config.sessions_dir,
            session_prefix=config.session_prefix,
            notifier=NotificationDispatcher.from_config(config.notifications),
            index=index,
        )

    def create_workflow(
        self,
        mode: PairingMode,
        phone_number: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> PairingWorkflow:
        """Build and register a workflow without starting it.

        Raises:
            InvalidPhoneNumber: Bad number in CODE mode.
            InvalidSessionId: Unusable custom session id.
            SessionBusy: The session id is already in use.
        """
        workflow = PairingWorkflow(
            mode=mode,
            phone_number=phone_number,
            session_id=session_id,
            session_prefix=self.session_prefix,
            socket_factory=self.socket_factory,
            archive=self.archive,
            registry=self.registry,
            settings=self.settings,
            sessions_dir=self.sessions_dir,
            notifier=self.notifier,
            index=self.index,
        )

        sid = workflow.session_id
        if sid in self._workflows:
            raise SessionBusy(f"Session {sid} is already pairing")
        if session_id is not None and (workflow.store.exists() or sid in self.registry):
            raise SessionBusy(f"Session {sid} already exists")

        self._workflows[sid] = workflow
        return workflow

    async def start_pairing(
        self,
        mode: PairingMode,
        phone_number: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> IssuedArtifact:
        """Start a workflow and wait for its QR code or pairing code.

        Returns:
            The issued artifact. The workflow keeps running afterwards.

        Raises:
            LinkVaultError: Validation failure, busy session, or the
                workflow failing before it issued anything.
        """
        workflow = self.create_workflow(mode, phone_number, session_id)
        task = workflow.launch()
        task.add_done_callback(lambda _: self._forget(workflow))

        logger.info(f"Started {mode.value} pairing {short_id(workflow.session_id)}")
        return await workflow.start()

    def _forget(self, workflow: PairingWorkflow) -> None:
        if self._workflows.get(workflow.session_id) is workflow:
            del self._workflows[workflow.session_id]

    def get_workflow(self, session_id: str) -> Optional[PairingWorkflow]:
        """Get a running workflow by session id."""
        return self._workflows.get(session_id)

    def list_workflows(self) -> list[PairingWorkflow]:
        return list(self._workflows.values())

    def cancel(self, session_id: str) -> bool:
        """Cancel a running workflow.

        Returns:
            True if a running workflow was cancelled.
        """
        workflow = self._workflows.get(session_id)
        if workflow is None:
            return False
        return workflow.cancel()

    async def stop(self) -> None:
        """Cancel every running workflow and wait for their cleanup."""
        workflows = list(self._workflows.values())
        for workflow in workflows:
            workflow.cancel("Service shutting down")
        if workflows:
            await asyncio.gather(*(workflow.wait() for workflow in workflows))
        self._workflows.clear()
        logger.info("Pairing manager stopped")

    def __len__(self) -> int:
        return len(self._workflows)
