"""
End-to-end scenario: create, listen, submit, verify.
"""

from .runner import ScenarioRunner, ScenarioReport

__all__ = ["ScenarioRunner", "ScenarioReport"]
