"""Application wiring: builds and owns every core component."""

import logging
import uuid

from flickswiper.config import Config
from flickswiper.discovery import DiscoverySession
from flickswiper.errors import ProviderError
from flickswiper.events import EventEmitter
from flickswiper.filters import FilterSet
from flickswiper.library import ItemStore
from flickswiper.lists import ListMembershipStore
from flickswiper.queue import ContentQueue, DiscoverySettings, Prefetcher
from flickswiper.sources.base import ContentProvider
from flickswiper.sources.tmdb import TMDBProvider
from flickswiper.store.base import Store
from flickswiper.sync.followed import FollowedListSync
from flickswiper.sync.publisher import ListPublisher
from flickswiper.sync.remote import DocumentLocks, RemoteListStore
from flickswiper.undo import UndoLedger

logger = logging.getLogger(__name__)


class FlickSwiper:
    """Container for one user's library, lists, sync and discovery session.

    The discovery session needs a content provider; without one the rest
    of the core (library, lists, publishing, following) still works.
    """

    def __init__(
        self,
        store: Store,
        remote: RemoteListStore,
        provider: ContentProvider | None = None,
        settings: DiscoverySettings | None = None,
        filters: FilterSet | None = None,
        undo_capacity: int = 10,
        rating_prompt_delay: float = 0.8,
        prefetcher: Prefetcher | None = None,
        user_id: str | None = None,
        display_name: str | None = None,
    ):
        self.events = EventEmitter()
        self.store = store
        self.remote = remote
        self.provider = provider
        self.user_id = user_id or uuid.uuid4().hex
        self.display_name = display_name

        self.library = ItemStore(store, self.events)
        self.ledger = UndoLedger(self.library, undo_capacity)
        self.lists = ListMembershipStore(store, self.events)

        locks = DocumentLocks()
        self.publisher = ListPublisher(store, remote, locks)
        self.publisher.watch(self.events)
        self.followed = FollowedListSync(store, remote, self.events, locks)

        self.queue: ContentQueue | None = None
        self.session: DiscoverySession | None = None
        if provider is not None:
            self.queue = ContentQueue(
                provider,
                self.library.all_classified_unique_ids,
                filters,
                settings,
                prefetcher,
                self.events,
            )
            self.session = DiscoverySession(
                self.library, self.ledger, self.queue, self.events, rating_prompt_delay
            )

    @classmethod
    def from_config(
        cls,
        config: Config,
        provider: ContentProvider | None = None,
        remote: RemoteListStore | None = None,
        store: Store | None = None,
    ) -> "FlickSwiper":
        """Build from config. A TMDB provider is created when a token is available."""
        if provider is None:
            token = config.resolved_token()
            if token:
                provider = TMDBProvider(token, config.watch_region)
            else:
                logger.info("No TMDB token configured; discovery disabled")

        return cls(
            store=store or config.create_store(),
            remote=remote or config.create_remote(),
            provider=provider,
            settings=config.discovery_settings(),
            filters=FilterSet(method=config.discovery.method),
            undo_capacity=config.discovery.undo_capacity,
            rating_prompt_delay=config.discovery.rating_prompt_delay,
            user_id=config.user_id,
            display_name=config.display_name,
        )

    def require_session(self) -> DiscoverySession:
        if self.session is None:
            raise ProviderError("Discovery needs a TMDB token. Set TMDB_API_TOKEN or tmdb_token in config.")
        return self.session

    async def start(self, discover: bool = True) -> None:
        """Attach followed list listeners and, if requested, fill the queue."""
        self.followed.activate()
        if discover and self.session is not None:
            await self.session.start()

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
        await self.followed.close()
        await self.publisher.wait_idle()
        if self.provider is not None:
            await self.provider.close()
        self.store.close()
