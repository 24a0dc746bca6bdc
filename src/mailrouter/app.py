"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from mailrouter.adapters import AdapterFactory
from mailrouter.anonymizer import DataAnonymizer
from mailrouter.config import AppConfig
from mailrouter.email import EmailProvider, EmlEmailProvider, GmailEmailProvider, MockEmailProvider
from mailrouter.models import User
from mailrouter.normalizer import AiResponseNormalizer
from mailrouter.orchestrator import SyncOrchestratorService
from mailrouter.prompts import GoalBasedPromptBuilder
from mailrouter.router import ModelRouterService, RouterConfig
from mailrouter.services import (
    AiAuditService,
    AiMessageProcessor,
    CredentialService,
    EmailAnalyzerService,
    IngestionService,
    MessageSyncService,
)
from mailrouter.storage.cache_store import CacheStore, MemoryCacheStore, SqliteCacheStore
from mailrouter.storage.sqlite_store import SqliteStore
from mailrouter.token_codec import TokenCodec
from mailrouter.tokens import TokenEstimator
from mailrouter.usage import UsageTracker


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared, user-independent dependencies.

    Importance: Storage, cache and usage counters are shared; routers are built per user.
    Alternatives: Rebuild every dependency per request.
    """

    config: AppConfig
    store: SqliteStore
    cache: CacheStore
    usage: UsageTracker
    credentials: CredentialService

    def services_for_user(self, user_id: int) -> "AppServices":
        """Summary: Build user-scoped services with adapters bound to that user's keys.

        Importance: Each call constructs fresh adapters, so credentials never leak across users.
        Alternatives: Mutate a shared router with the current user's key.
        """

        config = self.config
        estimator = TokenEstimator(
            chars_per_token=config.chars_per_token,
            safety_buffer_percentage=config.safety_buffer_percentage,
            max_completion_tokens=config.max_completion_tokens,
        )
        adapters = AdapterFactory(
            config=config, usage=self.usage, key_resolver=self.credentials.resolve_api_key
        ).build(user_id)
        router = ModelRouterService(
            adapters,
            estimator,
            RouterConfig(
                strategy=config.routing_strategy,
                primary_model=config.primary_model,
                fallback_delay_seconds=config.fallback_delay_seconds,
            ),
        )
        analyzer = EmailAnalyzerService(
            router=router,
            normalizer=AiResponseNormalizer(),
            prompt_builder=GoalBasedPromptBuilder(),
            anonymizer=DataAnonymizer() if config.anonymize else None,
            store=self.store,
            user_id=user_id,
            token_limit=config.email_token_limit,
        )
        processor = AiMessageProcessor(self.store, analyzer, max_workers=config.ai_max_workers)
        sync = MessageSyncService(
            self.store,
            build_providers(config),
            user_id=user_id,
            fetch_limit=config.sync_fetch_limit,
        )
        orchestrator = SyncOrchestratorService(
            cache=self.cache,
            sync_service=sync,
            processor=processor,
            store=self.store,
            user_id=user_id,
            lock_ttl=config.lock_ttl_seconds,
        )
        return AppServices(
            ingestion=IngestionService(store=self.store, user_id=user_id),
            credentials=self.credentials,
            router=router,
            analyzer=analyzer,
            processor=processor,
            sync=sync,
            orchestrator=orchestrator,
            ai_audit=AiAuditService(store=self.store, user_id=user_id),
            store=self.store,
            user_id=user_id,
        )


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of user-scoped services.

    Importance: Simplifies passing dependencies to the CLI and API layers.
    Alternatives: Use a dependency injection container.
    """

    ingestion: IngestionService
    credentials: CredentialService
    router: ModelRouterService
    analyzer: EmailAnalyzerService
    processor: AiMessageProcessor
    sync: MessageSyncService
    orchestrator: SyncOrchestratorService
    ai_audit: AiAuditService
    store: SqliteStore
    user_id: int


def build_cache(config: AppConfig) -> CacheStore:
    """Summary: Construct the lock and usage cache from configuration.

    Importance: The SQLite cache is shared by every process using the same database file.
    Alternatives: Always use an in-memory cache.
    """

    if config.cache_driver == "memory":
        return MemoryCacheStore()
    if config.cache_driver == "sqlite":
        cache = SqliteCacheStore(config.db_path)
        cache.initialize()
        return cache
    raise ValueError(f"Unknown cache driver: {config.cache_driver}")


def build_providers(config: AppConfig) -> list[EmailProvider]:
    providers: list[EmailProvider] = []
    for channel in config.sync_channels:
        if channel == "mock":
            providers.append(MockEmailProvider(Path(config.mock_fixture_path)))
        elif channel == "eml":
            providers.append(EmlEmailProvider.from_directory(Path(config.eml_directory)))
        elif channel == "gmail":
            if not config.gmail_access_token:
                raise ValueError("GMAIL_ACCESS_TOKEN is required for the gmail channel")
            providers.append(
                GmailEmailProvider(config.gmail_access_token, config.gmail_api_base_url)
            )
        else:
            raise ValueError(f"Unknown sync channel: {channel}")
    return providers


def build_context(config: AppConfig) -> AppContext:
    """Summary: Build shared context for user-scoped services.

    Importance: Initializes storage once and reuses it across users and requests.
    Alternatives: Construct dependencies separately per request.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    cache = build_cache(config)
    return AppContext(
        config=config,
        store=store,
        cache=cache,
        usage=UsageTracker(cache),
        credentials=CredentialService(store=store, codec=TokenCodec(config.token_secret)),
    )


def default_user_id(context: AppContext) -> int:
    user = User(display_name=context.config.default_user_name, email=context.config.default_user_email)
    return context.store.ensure_user(user)


def build_services(config: AppConfig) -> AppServices:
    """Summary: Build services for the configured default user.

    Importance: Provides a single construction path for the CLI.
    Alternatives: Instantiate services directly within the CLI entrypoint.
    """

    context = build_context(config)
    return context.services_for_user(default_user_id(context))
