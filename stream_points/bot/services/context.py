"""Application context: every service wired to its collaborators.

The chat client, the HTTP API and the background loops all receive the same
``AppContext``; nothing is read from module-level state.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from stream_points.bot.services.activity_service import ActivityService
from stream_points.bot.services.announcer import Announcer
from stream_points.bot.services.base import ClipOwnerOracle
from stream_points.bot.services.base import Clock
from stream_points.bot.services.base import LiveStatusOracle
from stream_points.bot.services.base import ViewerListOracle
from stream_points.bot.services.bot_classifier import BotClassifier
from stream_points.bot.services.clips_service import ClipWorkflow
from stream_points.bot.services.locks import UserLocks
from stream_points.bot.services.monthly_service import MonthlyResetService
from stream_points.bot.services.points_service import PointsLedger
from stream_points.bot.services.spam_gate import AntiSpamGate
from stream_points.bot.services.twitch_api import HelixClient
from stream_points.bot.services.twitch_api import StreamStatus
from stream_points.bot.services.viewtime_service import ViewtimeSweeper
from stream_points.shared.config import Settings
from stream_points.shared.database import Database
from stream_points.shared.database import init_database

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    database: Database
    locks: UserLocks
    announcer: Announcer
    stream_status: StreamStatus
    ledger: PointsLedger
    gate: AntiSpamGate
    classifier: BotClassifier
    activity: ActivityService
    clips: ClipWorkflow
    sweeper: ViewtimeSweeper
    monthly: MonthlyResetService
    helix: HelixClient | None = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        database: Database,
        helix: HelixClient | None = None,
        live_oracle: LiveStatusOracle | None = None,
        viewer_oracle: ViewerListOracle | None = None,
        owner_oracle: ClipOwnerOracle | None = None,
        announcer: Announcer | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> AppContext:
        """Wire all services.

        Oracles default to the Helix client when its read credentials are
        configured; otherwise they stay unset and each call site applies
        its unavailable-source policy.
        """
        if helix is not None and settings.helix_configured:
            live_oracle = live_oracle or helix
            viewer_oracle = viewer_oracle or helix
            owner_oracle = owner_oracle or helix

        if announcer is None:
            privileged = helix if helix is not None and settings.chat_api_configured else None
            announcer = Announcer(privileged=privileged)

        locks = UserLocks()
        stream_status = StreamStatus(settings, live_oracle)
        ledger = PointsLedger(database, settings, locks, clock)
        gate = AntiSpamGate(database, settings, clock)
        classifier = BotClassifier(database, settings, clock)

        return cls(
            settings=settings,
            database=database,
            locks=locks,
            announcer=announcer,
            stream_status=stream_status,
            ledger=ledger,
            gate=gate,
            classifier=classifier,
            activity=ActivityService(
                database, settings, ledger, gate, classifier, stream_status, locks, clock, rng
            ),
            clips=ClipWorkflow(
                database, settings, ledger, locks, announcer, owner_oracle, clock
            ),
            sweeper=ViewtimeSweeper(
                database, settings, ledger, classifier, stream_status, locks, viewer_oracle, clock
            ),
            monthly=MonthlyResetService(database, settings, locks, announcer, clock),
            helix=helix,
        )

    async def close(self) -> None:
        await self.announcer.drain()
        if self.helix is not None:
            await self.helix.close()
        await self.database.close()


async def create_context(settings: Settings) -> AppContext:
    """Open the database and Helix client and build the context."""
    database = await init_database(settings.database_url, settings.database_echo)
    helix = HelixClient(settings)

    if not settings.helix_configured:
        logger.warning(
            "Twitch API credentials not configured: live check disabled, "
            "viewtime sweeps will be skipped"
        )
    return AppContext.build(settings, database, helix=helix)
