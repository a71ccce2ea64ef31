# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional

# Third-Party Imports
import pandas as pd

# Local Imports
from diversity_16s.errors import DiversityError
from diversity_16s.stats.utils import TestResult

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('diversity_16s')

# =================================== DATA CLASSES =================================== #

@dataclass
class SuiteResult:
    """Results of a batch of independent tests.

    Attributes:
        results:  Completed tests by name.
        failures: Reason each failed test did not produce a result.
    """
    results: Dict[str, TestResult] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    def summary(self) -> pd.DataFrame:
        """One row per completed test, indexed by test name."""
        return pd.DataFrame(
            [result.to_dict() for result in self.results.values()],
            index=list(self.results),
            columns=['test', 'statistic', 'p_value', 'group_column', 'effect_size']
        )

# ====================================== RUNNER ====================================== #

def run_suite(
    tests: Mapping[str, Callable[[], TestResult]],
    label: Optional[str] = None
) -> SuiteResult:
    """Run independent tests, isolating failures.

    A ``DiversityError`` (which includes every ``StatisticalTestError``) or a
    ``ValueError`` raised by one test is logged and recorded in
    ``failures``; the remaining tests still run. Other exceptions propagate.

    Args:
        tests: Zero-argument callables keyed by test name.
        label: Prefix for log messages.

    Returns:
        SuiteResult with one entry per test in either ``results`` or
        ``failures``.
    """
    suite = SuiteResult()
    prefix = f"{label}: " if label else ""
    for name, test in tests.items():
        try:
            suite.results[name] = test()
        except (DiversityError, ValueError) as e:
            reason = f"{type(e).__name__}: {e}"
            logger.error(f"{prefix}Test '{name}' failed: {reason}")
            suite.failures[name] = reason
    logger.info(
        f"{prefix}{len(suite.results)}/{len(tests)} tests completed"
        + (f", {len(suite.failures)} failed" if suite.failures else "")
    )
    return suite
