"""
Coordination-Mesh FastAPI Application
Goal intake, plan consensus and execution monitoring for agent meshes
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI

from coordmesh.agents.base import AgentRegistry
from coordmesh.agents.remote import HttpAgent
from coordmesh.config import Settings, settings
from coordmesh.engine.coordinator import CoordinationEngine
from coordmesh.engine.scoring import create_scoring
from coordmesh.routes import router

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def discover_agents(config: Settings) -> List[HttpAgent]:
    """Fetch agent info from every configured remote agent URL."""
    urls = config.get_remote_agents()
    if not urls:
        return []
    results = await asyncio.gather(
        *(HttpAgent.discover(url, config.mesh_secret, timeout_s=config.agent_http_timeout_s) for url in urls),
    )
    agents = [a for a in results if a is not None]
    logger.info("Discovered %d/%d remote agents", len(agents), len(urls))
    return agents


def build_engine(config: Settings, agents: Optional[AgentRegistry] = None) -> CoordinationEngine:
    """Wire a CoordinationEngine from settings."""
    scoring = create_scoring(config.scoring_strategy, config.get_agent_weights())
    return CoordinationEngine(
        agents or AgentRegistry(),
        config.build_coordination_config(),
        scoring=scoring,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info(f"Starting Coordination-Mesh on {settings.host}:{settings.port}")
    registry = AgentRegistry(await discover_agents(settings))
    engine = build_engine(settings, registry)
    await engine.start()
    app.state.coordination_engine = engine
    app.state.mesh_secret = settings.mesh_secret
    app.state.agent_http_timeout_s = settings.agent_http_timeout_s

    yield

    # Shutdown
    logger.info("Shutting down Coordination-Mesh")
    await engine.stop()
    for agent in engine.agents.all():
        if isinstance(agent, HttpAgent):
            await agent.close()


# Create FastAPI application
app = FastAPI(
    title="Coordination-Mesh",
    description="Multi-agent goal planning, consensus and execution monitoring",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Basic health check endpoint"""
    engine = getattr(app.state, "coordination_engine", None)
    return {
        "status": "healthy" if engine is not None and engine.running else "starting",
        "service": "coordination-mesh",
        "version": "1.0.0",
        "agents_registered": len(engine.agents) if engine is not None else 0,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "coordmesh.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
