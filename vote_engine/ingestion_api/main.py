"""
FastAPI adapter exposing the vote engine.

Identity is verified upstream: the voter_id in the request body is trusted.
The engine returns structured outcomes; this module only maps them to HTTP
status codes.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool

from vote_engine.config import Config
from vote_engine.engine import VotingEngine
from vote_engine.ingestion_api.config import settings
from vote_engine.ingestion_api.models import (
    ErrorResponse,
    HealthResponse,
    TallyResponse,
    VoteRequest,
    VoteResponse,
)
from vote_engine.shared import CastOutcome, StoreUnavailableError

logger = logging.getLogger(__name__)

# Prometheus metrics
vote_requests = Counter(
    "vote_requests_total",
    "Total number of vote requests by outcome",
    ["outcome"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"]
)

OUTCOME_STATUS = {
    CastOutcome.SUCCESS: status.HTTP_200_OK,
    CastOutcome.ALREADY_VOTED: status.HTTP_409_CONFLICT,
    CastOutcome.CANDIDATE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CastOutcome.CANDIDATE_DELETED: status.HTTP_410_GONE,
    CastOutcome.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

API_PREFIX = f"/api/{settings.API_VERSION}"


def create_app(engine: Optional[VotingEngine] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        engine: Pre-built engine; when omitted one is built from Config on
            startup and closed on shutdown
    """
    limiter = Limiter(key_func=get_remote_address)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        logger.info(f"Starting {settings.SERVICE_NAME} service...")
        owns_engine = engine is None
        try:
            app.state.engine = engine or VotingEngine.from_config()
            if settings.RECONCILE_ON_STARTUP:
                app.state.engine.reconciliation.start()
            logger.info(f"{settings.SERVICE_NAME} started successfully")
        except Exception as e:
            logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
            raise

        yield

        logger.info(f"Shutting down {settings.SERVICE_NAME} service...")
        await app.state.engine.coordinator.drain()
        if owns_engine:
            app.state.engine.close()
        logger.info(f"{settings.SERVICE_NAME} shut down successfully")

    app = FastAPI(
        title="Vote API",
        description="Cast exactly-once votes and read the live tally",
        version=settings.API_VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        """Middleware to track request duration."""
        with request_duration.labels(method=request.method, endpoint=request.url.path).time():
            return await call_next(request)

    @app.post(
        f"{API_PREFIX}/votes",
        response_model=VoteResponse,
        responses={
            404: {"model": VoteResponse, "description": "Candidate not found"},
            409: {"model": VoteResponse, "description": "Voter already voted"},
            410: {"model": VoteResponse, "description": "Candidate deleted"},
            503: {"model": VoteResponse, "description": "Store unavailable, safe to retry"},
        }
    )
    @limiter.limit(settings.RATE_LIMIT)
    async def cast_vote(request: Request, vote: VoteRequest):
        """
        Cast a vote.

        - **voter_id**: authenticated voter identifier
        - **candidate_id**: candidate to vote for
        """
        result = await app.state.engine.coordinator.cast_vote_async(vote.voter_id, vote.candidate_id)
        vote_requests.labels(outcome=result.outcome.value).inc()

        response = VoteResponse(
            outcome=result.outcome.value,
            voter_id=result.voter_id,
            candidate_id=result.candidate_id,
            idempotent=result.idempotent,
            snapshot=(
                {"candidate_id": result.snapshot.candidate_id, "vote_count": result.snapshot.vote_count}
                if result.snapshot else None
            )
        )
        return JSONResponse(
            status_code=OUTCOME_STATUS[result.outcome],
            content=response.model_dump(mode="json")
        )

    @app.get(
        f"{API_PREFIX}/tally",
        response_model=TallyResponse,
        responses={503: {"model": ErrorResponse, "description": "Store unavailable"}}
    )
    async def get_tally() -> TallyResponse:
        """Live tally, highest vote count first, soft-deleted candidates hidden."""
        try:
            tally = await run_in_threadpool(app.state.engine.tally.get_tally)
        except StoreUnavailableError as e:
            logger.error(f"Error getting tally: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Tally store unavailable"
            )

        return TallyResponse(
            candidates=[entry.to_dict() for entry in tally],
            total_votes=sum(entry.vote_count for entry in tally)
        )

    @app.post(f"{API_PREFIX}/reconciliation")
    async def run_reconciliation():
        """Run one reconciliation pass and return its report."""
        try:
            report = await run_in_threadpool(app.state.engine.reconciliation.run_once)
        except StoreUnavailableError as e:
            logger.error(f"Reconciliation failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Store unavailable"
            )
        return report.to_dict()

    @app.get(
        f"{API_PREFIX}/health",
        response_model=HealthResponse,
        responses={503: {"model": HealthResponse, "description": "Service unhealthy"}}
    )
    async def health_check():
        """Check the stores behind the engine."""
        services = await run_in_threadpool(app.state.engine.health)
        healthy = all(state in ("connected", "in_memory") for state in services.values())

        response = HealthResponse(status="healthy" if healthy else "unhealthy", services=services)
        return JSONResponse(
            status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json")
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


def main():
    """Run the API with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else getattr(logging, Config.LOG_LEVEL),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
