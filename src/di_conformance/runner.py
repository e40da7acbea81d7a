"""
Matrix runner.

For every implementation column: issue a fresh copy of a fixture, resolve the
verification methods and controllers of the returned proofs, then evaluate
every rule into one matrix cell.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from di_conformance.assertions import ProofBundle, Requirement, Rule, RuleResult
from di_conformance.did_resolver import ResolutionError
from di_conformance.endpoints import CapabilitySet, Endpoint, Match
from di_conformance.fixtures import TestData, generate_test_data
from di_conformance.issuance import IssuanceError, create_initial_vc, get_proofs
from di_conformance.report import CellStatus, FailureKind, Matrix, MatrixCell
from di_conformance.verification_method import VerificationMethodResolver

logger = logging.getLogger(__name__)


@dataclass
class ColumnSetup:
    """Data gathered for one column before its rules run.

    A failed stage stores the reason and failure kind in ``errors`` keyed by
    the requirement it would have satisfied.
    """

    bundle: ProofBundle
    errors: dict[Requirement, tuple[str, FailureKind]] = field(default_factory=dict)

    def blocking_error(self, rule: Rule) -> tuple[str, FailureKind] | None:
        """First setup failure among the stages ``rule`` needs."""
        for requirement in Requirement:
            if requirement in rule.requires and requirement in self.errors:
                return self.errors[requirement]
        return None


class MatrixRunner:
    """Cross-products implementations with rules."""

    def __init__(
        self,
        resolver: VerificationMethodResolver | None = None,
        test_data: TestData | None = None,
        fixture: str = "validVc",
        required_tags: Iterable[str] = (),
        concurrency: int = 1,
    ) -> None:
        """Initialize the runner.

        Args:
            resolver: Verification method resolver. Created if not provided.
            test_data: Fixture store. Generated if not provided.
            fixture: Name of the fixture every issuer is asked to sign.
            required_tags: Tags the issuer and verifier of a column must have.
            concurrency: Number of columns set up at the same time.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.resolver = resolver or VerificationMethodResolver()
        self.test_data = test_data or generate_test_data()
        self.fixture = fixture
        self.required_tags = CapabilitySet(required_tags)
        self.concurrency = concurrency

    async def setup_column(self, column_id: str, match: Match) -> ColumnSetup:
        """Issue a credential and resolve the documents its proofs reference."""
        issuer = match.endpoints[0]
        verifier = match.implementation.find_verifier(self.required_tags)
        unsigned = self.test_data.clone(self.fixture)
        setup = ColumnSetup(
            bundle=ProofBundle(credential=None, verifier=verifier, unsigned=unsigned)
        )

        try:
            credential = await create_initial_vc(issuer, unsigned)
        except IssuanceError as e:
            kind = FailureKind.ENVIRONMENT if e.transport else FailureKind.IMPLEMENTATION
            reason = f"Issuance failed: {e}"
            for requirement in Requirement:
                if requirement != Requirement.VERIFIER:
                    setup.errors[requirement] = (reason, kind)
            return setup

        setup.bundle.credential = credential
        setup.bundle.proofs = get_proofs(credential)

        try:
            methods = await self.resolver.resolve_methods(setup.bundle.proofs)
        except ResolutionError as e:
            logger.warning("%s: verification method resolution failed: %s", column_id, e)
            reason = (
                f"Verification method resolution failed: {e}",
                _resolution_kind(e),
            )
            setup.errors[Requirement.VERIFICATION_METHODS] = reason
            setup.errors[Requirement.CONTROLLERS] = reason
            return setup
        setup.bundle.verification_method_documents = methods

        try:
            setup.bundle.controller_documents = await self.resolver.resolve_controllers(
                methods
            )
        except ResolutionError as e:
            logger.warning("%s: controller resolution failed: %s", column_id, e)
            setup.errors[Requirement.CONTROLLERS] = (
                f"Controller resolution failed: {e}",
                _resolution_kind(e),
            )
        return setup

    async def run_column(
        self, column_id: str, match: Match | None, rules: list[Rule]
    ) -> list[MatrixCell]:
        """Evaluate every rule for one implementation."""
        skip_reason = self._skip_reason(match)
        if skip_reason is not None:
            logger.info("Skipping %s: %s", column_id, skip_reason)
            return [
                MatrixCell(column_id, rule.id, CellStatus.SKIP, skip_reason, link=rule.link)
                for rule in rules
            ]

        setup = await self.setup_column(column_id, match)
        cells = []
        for rule in rules:
            blocked = setup.blocking_error(rule)
            if blocked is not None:
                result = RuleResult(CellStatus.FAIL, blocked[0], blocked[1])
            else:
                result = await _evaluate(column_id, rule, setup.bundle)
            logger.debug("%s / %s: %s", column_id, rule.id, result.status.value)
            cells.append(
                MatrixCell(
                    column_id,
                    rule.id,
                    result.status,
                    result.reason,
                    kind=result.kind,
                    link=rule.link,
                )
            )
        return cells

    def _skip_reason(self, match: Match | None) -> str | None:
        if match is None or not match.endpoints:
            return "Implementation has no matching issuer."
        issuer = match.endpoints[0]
        if not issuer.tags.is_superset_of(self.required_tags):
            missing = ", ".join(issuer.tags.missing(self.required_tags))
            return f"Issuer lacks required capability tags: {missing}"
        return None

    async def run(
        self,
        columns: Mapping[str, Match | None],
        rules: list[Rule],
        title: str = "Conformance",
    ) -> Matrix:
        """Build the conformance matrix.

        Args:
            columns: Column id to match, in the order columns should appear.
                A ``None`` match is recorded as skipped.
            rules: Rules to evaluate, in row order.
            title: Matrix title.
        """
        matrix = _new_matrix(title, columns, rules)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(column_id: str, match: Match | None) -> list[MatrixCell]:
            async with semaphore:
                return await self.run_column(column_id, match, rules)

        results = await asyncio.gather(
            *(bounded(column_id, match) for column_id, match in columns.items())
        )
        for cells in results:
            for cell in cells:
                matrix.record(cell)
        return matrix

    async def run_verifiers(
        self,
        issuer: Endpoint,
        columns: Mapping[str, Match | None],
        rules: list[Rule],
        title: str = "Conformance",
    ) -> Matrix:
        """Check verifiers against one credential from a reference issuer.

        Args:
            issuer: Issuer that signs the credential every verifier receives.
            columns: Column id to verifier match, in column order.
            rules: Rules to evaluate; ``ProofBundle.verifier`` is the column's
                verifier.
            title: Matrix title.
        """
        matrix = _new_matrix(title, columns, rules)
        credential = None
        issuance_error: tuple[str, FailureKind] | None = None
        try:
            credential = await create_initial_vc(
                issuer, self.test_data.clone(self.fixture)
            )
        except IssuanceError as e:
            kind = FailureKind.ENVIRONMENT if e.transport else FailureKind.IMPLEMENTATION
            issuance_error = (f"Reference issuance failed: {e}", kind)

        for column_id, match in columns.items():
            for rule in rules:
                if match is None or not match.endpoints:
                    cell = MatrixCell(
                        column_id, rule.id, CellStatus.SKIP,
                        "Implementation has no matching verifier.", link=rule.link,
                    )
                elif issuance_error is not None:
                    cell = MatrixCell(
                        column_id, rule.id, CellStatus.FAIL, issuance_error[0],
                        kind=issuance_error[1], link=rule.link,
                    )
                else:
                    bundle = ProofBundle.from_credential(
                        copy.deepcopy(credential),
                        verifier=match.endpoints[0],
                        unsigned=self.test_data.clone(self.fixture),
                    )
                    result = await _evaluate(column_id, rule, bundle)
                    cell = MatrixCell(
                        column_id, rule.id, result.status, result.reason,
                        kind=result.kind, link=rule.link,
                    )
                matrix.record(cell)
        return matrix


def _resolution_kind(error: ResolutionError) -> FailureKind:
    return FailureKind.ENVIRONMENT if error.transport else FailureKind.IMPLEMENTATION


async def _evaluate(column_id: str, rule: Rule, bundle: ProofBundle) -> RuleResult:
    """Evaluate ``rule``, recording an unexpected exception as a failed cell."""
    try:
        return await rule.evaluate(bundle)
    except Exception as e:
        logger.exception("%s / %s: check raised %s", column_id, rule.id, type(e).__name__)
        return RuleResult(
            CellStatus.FAIL,
            f"Check raised {type(e).__name__}: {e}",
            FailureKind.IMPLEMENTATION,
        )


def _new_matrix(
    title: str, columns: Mapping[str, Match | None], rules: list[Rule]
) -> Matrix:
    matrix = Matrix(title=title)
    for rule in rules:
        matrix.add_row(rule.id, rule.title)
    for column_id in columns:
        matrix.add_column(column_id)
    return matrix


def run_matrix(
    columns: Mapping[str, Match | None],
    rules: list[Rule],
    **kwargs: Any,
) -> Matrix:
    """Run a matrix synchronously."""
    title = kwargs.pop("title", "Conformance")
    return asyncio.run(MatrixRunner(**kwargs).run(columns, rules, title=title))
