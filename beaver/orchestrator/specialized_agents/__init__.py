"""Specialist agents for the roles the main agent delegates to."""

from beaver.orchestrator.specialized_agents.frontend_agent import FrontendAgent, UIUXAgent
from beaver.orchestrator.specialized_agents.backend_agent import BackendAgent, DataLogicAgent
from beaver.orchestrator.specialized_agents.testing_agent import TestingAgent
from beaver.orchestrator.specialized_agents.deployment_agent import DeploymentAgent

__all__ = [
    "FrontendAgent",
    "UIUXAgent",
    "BackendAgent",
    "DataLogicAgent",
    "TestingAgent",
    "DeploymentAgent",
]
