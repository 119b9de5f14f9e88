"""
OpsDesk - Stage Policies
========================
Explicit per-kind approval state machines.

A decision is legal only when the request's current status is a declared
stage of its kind's policy and that stage has a transition for the decision.
Terminal stages have no outgoing transitions.

    general:       Pending --approve--> Approved | --reject--> Rejected
    deletion:      pending --approve--> approved | --reject--> rejected
    modification:  pending --approve--> completed | --reject--> rejected
    money:         pending_admin --approve--> pending_finance --approve--> approved
                   (any non-terminal) --reject--> rejected
"""

from dataclasses import dataclass

from opsdesk.core.errors import ConfigError, InvalidTransition
from opsdesk.domain.enums import Decision, RequestKind, Role, StageOutcome


@dataclass(frozen=True)
class Stage:
    """A named point in a kind's state machine."""

    name: str
    role: str | None = None  # who may act here; None for terminal stages
    department: str | None = None
    terminal: bool = False
    outcome: StageOutcome | None = None

    @property
    def is_approved(self) -> bool:
        return self.terminal and self.outcome == StageOutcome.APPROVED


@dataclass(frozen=True)
class Transition:
    """Edge of a stage policy."""

    from_stage: str
    decision: Decision
    to_stage: str

    def __str__(self):
        return f"{self.from_stage} --[{self.decision.value}]--> {self.to_stage}"


@dataclass(frozen=True)
class StagePolicy:
    """
    State machine for one request kind.

    Contract: frozen; transitions reference only declared stages.
    """

    kind: RequestKind
    initial_stage: str
    stages: tuple[Stage, ...]
    transitions: tuple[Transition, ...]

    def stage(self, name: str) -> Stage | None:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.stages)

    @property
    def terminal_stages(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.stages if s.terminal)

    @property
    def pending_stages(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.stages if not s.terminal)

    def is_terminal(self, name: str) -> bool:
        stage = self.stage(name)
        return stage is not None and stage.terminal

    def allowed_decisions(self, name: str) -> frozenset[Decision]:
        return frozenset(t.decision for t in self.transitions if t.from_stage == name)

    def resolve(self, status: str, decision: Decision | str) -> Transition:
        """
        Find the transition for ``decision`` from ``status``.

        Raises:
            InvalidTransition: status is not a stage of this policy, or the
                stage does not allow the decision.
        """
        try:
            decision = Decision(decision)
        except ValueError:
            raise InvalidTransition(
                f"Unknown decision '{decision}'", kind=self.kind.value, stage=status, decision=str(decision)
            ) from None

        if self.stage(status) is None:
            raise InvalidTransition(
                f"'{status}' is not a stage of the {self.kind.value} policy",
                kind=self.kind.value,
                stage=status,
                decision=decision.value,
            )

        for transition in self.transitions:
            if transition.from_stage == status and transition.decision == decision:
                return transition

        raise InvalidTransition(
            f"Cannot {decision.value} a {self.kind.value} request at stage '{status}'",
            kind=self.kind.value,
            stage=status,
            decision=decision.value,
        )

    def validate(self) -> list[str]:
        """Return a list of structural problems (empty when well-formed)."""
        problems = []
        names = self.stage_names
        if len(set(names)) != len(names):
            problems.append(f"{self.kind.value}: duplicate stage names")
        if self.initial_stage not in names:
            problems.append(f"{self.kind.value}: initial stage '{self.initial_stage}' not declared")
        if self.is_terminal(self.initial_stage):
            problems.append(f"{self.kind.value}: initial stage is terminal")
        for t in self.transitions:
            if t.from_stage not in names or t.to_stage not in names:
                problems.append(f"{self.kind.value}: transition {t} references an undeclared stage")
            elif self.is_terminal(t.from_stage):
                problems.append(f"{self.kind.value}: terminal stage '{t.from_stage}' has an outgoing transition")
        for stage in self.stages:
            if stage.terminal and stage.outcome is None:
                problems.append(f"{self.kind.value}: terminal stage '{stage.name}' has no outcome")
            if not stage.terminal and not stage.role:
                problems.append(f"{self.kind.value}: stage '{stage.name}' has no authorized role")
            if not stage.terminal and not self.allowed_decisions(stage.name):
                problems.append(f"{self.kind.value}: stage '{stage.name}' is a dead end")
        return problems


def _single_stage(kind: RequestKind, pending: str, approved: str, rejected: str) -> StagePolicy:
    return StagePolicy(
        kind=kind,
        initial_stage=pending,
        stages=(
            Stage(pending, role=Role.ADMIN.value, department="Admin"),
            Stage(approved, department="Operations", terminal=True, outcome=StageOutcome.APPROVED),
            Stage(rejected, terminal=True, outcome=StageOutcome.REJECTED),
        ),
        transitions=(
            Transition(pending, Decision.APPROVE, approved),
            Transition(pending, Decision.REJECT, rejected),
        ),
    )


MONEY_POLICY = StagePolicy(
    kind=RequestKind.MONEY,
    initial_stage="pending_admin",
    stages=(
        Stage("pending_admin", role=Role.ADMIN.value, department="Admin"),
        Stage("pending_finance", role=Role.FINANCE.value, department="Finance"),
        Stage("approved", department="Operations", terminal=True, outcome=StageOutcome.APPROVED),
        Stage("rejected", terminal=True, outcome=StageOutcome.REJECTED),
    ),
    transitions=(
        Transition("pending_admin", Decision.APPROVE, "pending_finance"),
        Transition("pending_admin", Decision.REJECT, "rejected"),
        Transition("pending_finance", Decision.APPROVE, "approved"),
        Transition("pending_finance", Decision.REJECT, "rejected"),
    ),
)


STAGE_POLICIES: dict[RequestKind, StagePolicy] = {
    RequestKind.GENERAL: _single_stage(RequestKind.GENERAL, "Pending", "Approved", "Rejected"),
    RequestKind.DELETION: _single_stage(RequestKind.DELETION, "pending", "approved", "rejected"),
    RequestKind.MODIFICATION: _single_stage(RequestKind.MODIFICATION, "pending", "completed", "rejected"),
    RequestKind.MONEY: MONEY_POLICY,
}


def get_policy(kind: RequestKind | str) -> StagePolicy:
    """Policy for ``kind``; every kind has exactly one."""
    try:
        return STAGE_POLICIES[RequestKind(kind)]
    except (KeyError, ValueError):
        raise InvalidTransition(f"No stage policy for kind '{kind}'", kind=str(kind)) from None


def validate_policies(policies: dict[RequestKind, StagePolicy] = None) -> None:
    """Fail fast on a malformed or incomplete policy table."""
    policies = STAGE_POLICIES if policies is None else policies
    problems = []
    for kind in RequestKind:
        policy = policies.get(kind)
        if policy is None:
            problems.append(f"{kind.value}: no policy")
            continue
        if policy.kind != kind:
            problems.append(f"{kind.value}: registered under the wrong kind")
        problems.extend(policy.validate())
    if problems:
        raise ConfigError("Invalid stage policy table: " + "; ".join(problems), key="STAGE_POLICIES")


validate_policies()
