"""Fixed mapping from bottleneck type to root causes and remedial actions."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PlaybookEntry:
    root_causes: tuple[str, ...]
    actions: tuple[str, ...]


BOTTLENECK_PLAYBOOK: dict[str, PlaybookEntry] = {
    "skill": PlaybookEntry(
        root_causes=(
            "Demand for the skill exceeds the available hours of qualified employees",
            "Too few employees hold the skill at working proficiency",
        ),
        actions=("training", "hiring"),
    ),
    "department": PlaybookEntry(
        root_causes=(
            "Department allocations exceed its available hours",
            "Project intake outpaces department headcount",
        ),
        actions=("reallocation", "hiring"),
    ),
    "resource": PlaybookEntry(
        root_causes=(
            "Employee is allocated across more project hours than available",
        ),
        actions=("reallocation", "process_improvement"),
    ),
    "time": PlaybookEntry(
        root_causes=(
            "Concurrent project peaks fall in the same window",
        ),
        actions=("reallocation", "schedule_shift"),
    ),
}

ACTION_MITIGATIONS: dict[str, str] = {
    "hiring": "Open requisitions for the constrained capacity",
    "training": "Cross-train employees with adjacent skills",
    "reallocation": "Move allocations from over-committed to under-utilized staff",
    "process_improvement": "Reduce per-task effort through process changes",
    "schedule_shift": "Stagger project start dates to flatten the peak",
    "tool_adoption": "Automate repetitive work to free capacity",
}

ACTION_SUCCESS_METRICS: dict[str, tuple[str, ...]] = {
    "hiring": ("Open roles filled", "Shortfall hours reduced"),
    "training": ("Employees certified in the skill", "Skill utilization below 100%"),
    "reallocation": ("Utilization variance across team reduced",),
    "process_improvement": ("Hours per deliverable reduced",),
    "schedule_shift": ("Peak-period utilization below 100%",),
    "tool_adoption": ("Manual hours reduced",),
}


def playbook_for(bottleneck_type: str) -> PlaybookEntry:
    return BOTTLENECK_PLAYBOOK[bottleneck_type]


def mitigation_for(bottleneck_type: str) -> str:
    entry = BOTTLENECK_PLAYBOOK[bottleneck_type]
    return "; ".join(ACTION_MITIGATIONS[action] for action in entry.actions)
