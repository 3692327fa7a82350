from __future__ import annotations

from redgreen.agents.base import SpecialistAgent


class ImplementerAgent(SpecialistAgent):
    role = "implementer"
    prompt_file = "implementer.md"
    fallback_prompt = """
You are the implementation specialist.
Write the smallest production change that makes the failing test pass.
Never edit the test. Answer with JSON only.
""".strip()
