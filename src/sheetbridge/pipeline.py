"""Extract -> transform -> load orchestration between two storage targets.

Usage:
    from sheetbridge.pipeline import Pipeline, SyncPolicy

    result = (
        Pipeline()
        .extract("shop.xlsx")
        .transform()
        .load("sqlite:///shop.sqlite")
        .execute(SyncPolicy.MERGE)
    )
    print(f"{result.rows_loaded} rows loaded")
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Union

from sheetbridge.adapters.base import StorageAdapter, SyncPolicy, TableData
from sheetbridge.errors import IncompleteConfigurationError
from sheetbridge.factory import connect

logger = logging.getLogger(__name__)

__all__ = [
    "DataRules",
    "Pipeline",
    "PipelineResult",
    "SyncPolicy",
]

Rule = Callable[[TableData], TableData]


class DataRules:
    """Ordered transformation rules applied to extracted table data.

    A rule is a callable taking and returning ``{table: rows}``, or another
    ``DataRules`` (applied as a unit).  No rules means identity.

    Example:
        >>> def drop_drafts(data):
        ...     return {t: [r for r in rows if r.get("status") != "draft"]
        ...             for t, rows in data.items()}
        >>> rules = DataRules([drop_drafts])
        >>> rules.apply({"invoice": [{"status": "draft"}, {"status": "paid"}]})
        {'invoice': [{'status': 'paid'}]}
    """

    def __init__(self, rules: "Iterable[Rule | DataRules] | None" = None) -> None:
        self._rules: list[Rule | DataRules] = []
        for rule in rules or []:
            self.add(rule)

    def add(self, rule: "Rule | DataRules") -> "DataRules":
        if not callable(rule):
            raise TypeError(f"Rule must be callable, got {type(rule).__name__}")
        self._rules.append(rule)
        return self

    def apply(self, data: TableData) -> TableData:
        for rule in self._rules:
            data = rule(data)
        return data

    __call__ = apply

    def __len__(self) -> int:
        return len(self._rules)


@dataclass
class PipelineResult:
    """Outcome of ``Pipeline.execute()``.

    Attributes:
        target: The storage target after synchronization.
        rows_loaded: Rows written by the upsert phase.
        statements: Structural changes applied to the target, in order.
        policy: Policy the run used.
        warnings: Changes the target skipped.
    """

    target: StorageAdapter
    rows_loaded: int = 0
    statements: list[str] = field(default_factory=list)
    policy: SyncPolicy = SyncPolicy.MERGE
    warnings: list[str] = field(default_factory=list)


class Pipeline:
    """Builder for one source -> rules -> target synchronization.

    Sources and targets may be adapters or anything ``factory.connect``
    accepts (URLs, file paths, workbooks, profiles).  An instance holds
    mutable configuration and must not run overlapping ``execute()`` calls.
    """

    def __init__(self) -> None:
        self._source: StorageAdapter | None = None
        self._rules: DataRules | None = None
        self._target: StorageAdapter | None = None

    def extract(self, source: Any, **options: Any) -> "Pipeline":
        """Set the source; *options* are forwarded to ``factory.connect``."""
        self._source = connect(source, **options)
        return self

    def transform(
        self, rules: Union[Rule, DataRules, Iterable[Rule], None] = None
    ) -> "Pipeline":
        """Set the transformation rules (``None`` for identity)."""
        if rules is None:
            self._rules = DataRules()
        elif isinstance(rules, DataRules):
            self._rules = rules
        elif callable(rules):
            self._rules = DataRules([rules])
        else:
            self._rules = DataRules(rules)
        return self

    def load(self, target: Any, **options: Any) -> "Pipeline":
        """Set the target; missing target files are created by default."""
        options.setdefault("create_if_missing", True)
        self._target = connect(target, **options)
        return self

    def reset(self) -> "Pipeline":
        """Clear source, rules and target."""
        self._source = None
        self._rules = None
        self._target = None
        return self

    def _validate(self) -> None:
        missing = [
            name
            for name, value in (
                ("source", self._source),
                ("rules", self._rules),
                ("target", self._target),
            )
            if value is None
        ]
        if missing:
            raise IncompleteConfigurationError(
                f"Pipeline is missing: {', '.join(missing)}. "
                f"Call extract(), transform() and load() before execute()."
            )

    def execute(
        self,
        policy: SyncPolicy | str = SyncPolicy.MERGE,
        tables: list[str] | None = None,
    ) -> PipelineResult:
        """Run validate -> extract -> transform -> synchronize + load.

        Any failure aborts the run; partial writes are rolled back by the
        target where it supports transactions.

        Raises:
            IncompleteConfigurationError: If source, rules or target is unset.
        """
        self._validate()
        policy = SyncPolicy(policy)

        logger.info("Extracting from %r", self._source)
        schema = self._source.structure(tables)
        data = self._source.data(tables) if policy.loads_data else {}
        logger.info(
            "Extracted %d table(s), %d row(s)",
            len(schema.tables),
            sum(len(rows) for rows in data.values()),
        )

        if self._rules:
            data = self._rules.apply(data)
            logger.info("Applied %d transformation rule(s)", len(self._rules))

        logger.info("Synchronizing %r with policy %s", self._target, policy.value)
        outcome = self._target.synchronize(schema, data, policy, tables)
        logger.info(
            "Applied %d change(s), loaded %d row(s)",
            len(outcome.statements),
            outcome.rows_loaded,
        )

        return PipelineResult(
            target=self._target,
            rows_loaded=outcome.rows_loaded,
            statements=outcome.statements,
            policy=policy,
            warnings=outcome.warnings,
        )
