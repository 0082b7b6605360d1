"""
Negotiation Agent Service - Main Application

Wires the negotiation store, agent orchestrator, email correlation and
the job queue into one FastAPI app. Agent runs and outbound emails are
jobs: published to RabbitMQ and consumed by this same process, or run
in-process when SCHEDULER_BACKEND=local.
"""

from dataclasses import dataclass
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
import asyncio
from contextlib import asynccontextmanager

from core.database import get_engine, init_db, make_session_factory
from core.openai import CompletionService
from core.rabbitmq import RabbitMQManager
from core.scheduler import LocalScheduler, RabbitMQScheduler, TaskScheduler
from config import AppConfig

from integration.gmail import GmailTransport

from services.negotiation_store import NegotiationStore
from services.notification_service import NotificationService
from services.negotiation_orchestrator import AgentOrchestrator
from services.email_correlator import EmailCorrelator
from services.email_dispatch import EmailDispatchService
from schemas.agent import AgentSettings

from actions.negotiation import NegotiationAction
from actions.agent import AgentControlAction
from actions.jobs import JobDispatcher

from api.v1.negotiation import NegotiationController
from api.v1.agent import AgentController
from api.v1.notification import NotificationController
from api.v1.webhook import WebhookController
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ------------------------------
# Load environment variables
# ------------------------------
load_dotenv()


@dataclass
class Services:
    store: NegotiationStore
    notifications: NotificationService
    scheduler: TaskScheduler
    orchestrator: AgentOrchestrator
    correlator: EmailCorrelator
    email_dispatch: EmailDispatchService
    negotiation_action: NegotiationAction
    agent_action: AgentControlAction
    dispatcher: JobDispatcher


def build_services(session_factory, scheduler: TaskScheduler, completion=None, transport=None,
                   default_settings: AgentSettings = None) -> Services:
    """Assemble the service graph around one session factory and scheduler."""
    default_settings = default_settings or AgentSettings()
    store = NegotiationStore(session_factory)
    notifications = NotificationService(session_factory)

    orchestrator = AgentOrchestrator(
        store, notifications, completion or CompletionService(), scheduler, default_settings)
    email_dispatch = EmailDispatchService(store, notifications, transport or GmailTransport())
    negotiation_action = NegotiationAction(store)

    return Services(
        store=store,
        notifications=notifications,
        scheduler=scheduler,
        orchestrator=orchestrator,
        correlator=EmailCorrelator(store, scheduler),
        email_dispatch=email_dispatch,
        negotiation_action=negotiation_action,
        agent_action=AgentControlAction(store, negotiation_action, scheduler, default_settings),
        dispatcher=JobDispatcher(store, orchestrator, email_dispatch),
    )


def create_app(services: Services, engine=None, rabbit_mq_manager: RabbitMQManager = None) -> FastAPI:

    # ------------------------------
    # Lifespan (startup / shutdown)
    # ------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            init_db(engine)

        if rabbit_mq_manager is not None:
            logger.info("Attempting RabbitMQ connection...")
            await rabbit_mq_manager.connect()
            app.state.consumer_task = asyncio.create_task(
                rabbit_mq_manager.consume(services.dispatcher.handle)
            )
            logger.info("Connected")
        elif isinstance(services.scheduler, LocalScheduler):
            services.scheduler.bind(services.dispatcher.handle)
            logger.info("Running jobs in-process")
        yield

        # Shutdown
        if rabbit_mq_manager is not None:
            rabbit_mq_manager.should_reconnect = False

            if hasattr(app.state, "consumer_task"):
                app.state.consumer_task.cancel()
                try:
                    await app.state.consumer_task
                except asyncio.CancelledError:
                    pass

            await rabbit_mq_manager.disconnect()
        elif isinstance(services.scheduler, LocalScheduler):
            await services.scheduler.drain()

    app = FastAPI(
        title="Negotiation Agent Service",
        description="APIs for freight negotiations, the negotiation agent and inbound email",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.services = services

    # ------------------------------
    # Middleware
    # ------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------
    # Routers
    # ------------------------------
    app.include_router(NegotiationController(services.negotiation_action).router)
    app.include_router(AgentController(services.agent_action).router)
    app.include_router(NotificationController(services.notifications).router)
    app.include_router(WebhookController(services.correlator).router)

    @app.get("/")
    def read_root():
        return {"status": "ok"}

    return app


# ------------------------------
# Default application
# ------------------------------
config = AppConfig()
engine = get_engine(config.DATABASE_URL)
session_factory = make_session_factory(engine)

if config.SCHEDULER_BACKEND == "local":
    rabbit_mq_manager = None
    scheduler = LocalScheduler()
else:
    rabbit_mq_manager = RabbitMQManager(
        rabbitmq_url=config.RABBITMQ_URL,
        queue_name=config.AGENT_QUEUE
    )
    scheduler = RabbitMQScheduler(rabbit_mq_manager)

services = build_services(session_factory, scheduler)
app = create_app(services, engine=engine, rabbit_mq_manager=rabbit_mq_manager)
