"""LangGraph wiring for one unit's lifecycle.

Transform -> Generate_Tests -> Validate -> (Heal -> Validate)* -> Finalize

The graph only routes. The step callables (provided by the orchestrator) do
the remote work and record every result on the session; the graph state just
carries what the router needs.
"""
from typing import Literal, Protocol, TypedDict

from langgraph.graph import StateGraph, END


class UnitRunState(TypedDict, total=False):
    unit_id: str
    attempts: int
    failures: int


class UnitSteps(Protocol):
    async def transform(self, state: UnitRunState) -> dict: ...
    async def generate_tests(self, state: UnitRunState) -> dict: ...
    async def validate(self, state: UnitRunState) -> dict: ...
    async def heal(self, state: UnitRunState) -> dict: ...
    async def finalize(self, state: UnitRunState) -> dict: ...


def next_after_validation(state: UnitRunState, max_healing_attempts: int) -> Literal['heal', 'finalize']:
    if state.get('failures', 0) == 0:
        return 'finalize'
    if state.get('attempts', 0) < max_healing_attempts:
        return 'heal'
    return 'finalize'


def recursion_limit(max_healing_attempts: int) -> int:
    # transform, tests, first validate, finalize + one heal/validate pair per attempt
    return 2 * max_healing_attempts + 8


def build_unit_graph(steps: UnitSteps, max_healing_attempts: int):
    sg = StateGraph(UnitRunState)
    sg.add_node('Transform', steps.transform)
    sg.add_node('Generate_Tests', steps.generate_tests)
    sg.add_node('Validate', steps.validate)
    sg.add_node('Heal', steps.heal)
    sg.add_node('Finalize', steps.finalize)

    sg.set_entry_point('Transform')
    sg.add_edge('Transform', 'Generate_Tests')
    sg.add_edge('Generate_Tests', 'Validate')
    sg.add_conditional_edges('Validate', lambda s: next_after_validation(s, max_healing_attempts), {
        'heal': 'Heal',
        'finalize': 'Finalize',
    })
    sg.add_edge('Heal', 'Validate')
    sg.add_edge('Finalize', END)
    return sg.compile()
