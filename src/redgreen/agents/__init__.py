from redgreen.agents.base import SpecialistAgent, SpecialistResponse
from redgreen.agents.implementer import ImplementerAgent
from redgreen.agents.test_writer import TestWriterAgent

__all__ = [
    "ImplementerAgent",
    "SpecialistAgent",
    "SpecialistResponse",
    "TestWriterAgent",
]
