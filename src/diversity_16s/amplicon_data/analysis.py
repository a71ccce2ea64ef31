# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

# Third-Party Imports
import pandas as pd

# ================================== LOCAL IMPORTS =================================== #

from diversity_16s import constants
from diversity_16s.amplicon_data.dataset import CommunityDataset
from diversity_16s.diversity.alpha import (
    DiversityRecord, analyze_alpha_diversity, estimate, normality_by_index,
    records_to_frame, to_plot_records
)
from diversity_16s.diversity.beta import DistanceResult, compute_distance
from diversity_16s.diversity.ordination import OrdinationResult, SmacofNMDS, ordinate
from diversity_16s.errors import DiversityError
from diversity_16s.stats.beta_diversity import permanova, permdisp
from diversity_16s.stats.suite import SuiteResult, run_suite
from diversity_16s.stats.utils import TestResult
from diversity_16s.utils.biom import load_snapshot, save_snapshot, snapshot_path
from diversity_16s.utils.progress import run_stages
from diversity_16s.utils.table_filtering import prune_rare_taxa
from diversity_16s.utils.taxonomy import ContaminantFilter

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger("diversity_16s")

# ===================================== PIPELINE ===================================== #

class AmpliconAnalysis:
    """Runs the diversity pipeline on one community dataset.

    Stages, in order: preparation (taxon renaming, contaminant filter, empty
    sample removal and snapshot), alpha diversity, rare taxon pruning,
    dissimilarity, ordination and the beta diversity tests for every
    configured group column.

    Args:
        config:     Configuration from :func:`diversity_16s.config.get_config`.
        dataset:    Unfiltered dataset.
        loader:     Zero-argument callable returning the unfiltered dataset;
                    only called when no snapshot is reused.
        output_dir: If given, result tables are written there as TSV.
        resume:     Reuse the filtered-dataset snapshot when it exists. Only
                    applies to the ``loader`` path; an explicit ``dataset`` is
                    always prepared afresh.
    """

    def __init__(
        self,
        config: Dict,
        dataset: Optional[CommunityDataset] = None,
        loader: Optional[Callable[[], CommunityDataset]] = None,
        output_dir: Optional[Union[str, Path]] = None,
        resume: bool = True
    ):
        if dataset is None and loader is None:
            raise ValueError("Either a dataset or a loader is required")
        self.config = config
        self._raw_dataset = dataset
        self._loader = loader
        self.output_dir = Path(output_dir) if output_dir else None
        self.resume = resume

        self.group_columns: List[str] = list(
            config.get('group_columns', constants.DEFAULT_GROUP_COLUMNS)
        )
        self.seed = config.get('beta_diversity', {}).get('seed', constants.DEFAULT_RANDOM_STATE)

        # Results
        self.dataset: Optional[CommunityDataset] = None
        self.pruned: Optional[CommunityDataset] = None
        self.alpha_diversity: List[DiversityRecord] = []
        self.normality: Dict[str, TestResult] = {}
        self.alpha_stats: Dict[str, SuiteResult] = {}
        self.distance: Optional[DistanceResult] = None
        self.ordination: Optional[OrdinationResult] = None
        self.beta_stats: Dict[str, SuiteResult] = {}
        self.failures: Dict[str, str] = {}

    def run(self) -> "AmpliconAnalysis":
        stages = [
            ("Preparing dataset", self._prepare),
            ("Alpha diversity", self._run_alpha_diversity),
            ("Pruning rare taxa", self._prune),
            ("Dissimilarity", self._run_distance),
            ("Ordination", self._run_ordination),
            ("Beta diversity tests", self._run_beta_tests),
        ]
        logger.info("Running amplicon diversity pipeline...")
        run_stages(stages, "Diversity pipeline")
        if self.failures:
            logger.warning(f"Stages with errors: {list(self.failures)}")
        logger.info("Amplicon diversity pipeline finished.")
        return self

    # HELPERS

    def _record_failure(self, stage: str, error: Exception) -> None:
        reason = f"{type(error).__name__}: {error}"
        logger.error(f"{stage} failed: {reason}")
        self.failures[stage] = reason

    def _write(self, df: pd.DataFrame, *parts: str) -> None:
        if self.output_dir is None:
            return
        output_path = self.output_dir.joinpath(*parts)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(output_path, sep='\t', index=True)
        logger.debug(f"Wrote {output_path}")

    def _write_suite(self, suite: SuiteResult, *parts: str) -> None:
        self._write(suite.summary(), *parts)
        for name, result in suite.results.items():
            if result.pairwise is not None:
                stem = parts[-1].rsplit('.', 1)[0]
                self._write(result.pairwise, *parts[:-1], f"{stem}_{name}_pairwise.tsv")

    def _present_group_columns(self, metadata: pd.DataFrame) -> List[str]:
        present = [c for c in self.group_columns if c in metadata.columns]
        for column in self.group_columns:
            if column not in present:
                logger.warning(f"Group column '{column}' not found in metadata; skipping")
        return present

    # STAGES

    def _prepare(self) -> None:
        snapshot_config = self.config.get('snapshot', {})
        snapshot_enabled = snapshot_config.get('enabled', True)
        snapshot_dir = snapshot_config.get('dir', constants.DEFAULT_SNAPSHOT_DIR)
        snapshot_key = snapshot_config.get('key', constants.DEFAULT_SNAPSHOT_KEY)

        if (
            snapshot_enabled and self.resume and self._raw_dataset is None
            and snapshot_path(snapshot_dir, snapshot_key).exists()
        ):
            self.dataset = load_snapshot(snapshot_dir, snapshot_key)
            logger.info(f"Resumed from snapshot: {self.dataset!r}")
            return

        dataset = self._raw_dataset if self._raw_dataset is not None else self._loader()
        logger.info(f"Input dataset: {dataset!r}")

        if self.config.get('rename_taxa', True):
            dataset = dataset.rename_taxa()

        contaminant_config = self.config.get('contaminant_filter', {})
        if contaminant_config.get('enabled', True):
            dataset = dataset.filter_taxa(ContaminantFilter.from_config(contaminant_config))

        if self.config.get('drop_empty_samples', True):
            dataset = dataset.drop_empty_samples()

        if snapshot_enabled:
            save_snapshot(dataset, snapshot_dir, snapshot_key)
        self.dataset = dataset

    def _run_alpha_diversity(self) -> None:
        alpha_config = self.config.get('alpha_diversity', {})
        if not alpha_config.get('enabled', True):
            logger.debug("Alpha diversity analysis disabled.")
            return

        try:
            self.alpha_diversity = estimate(
                self.dataset,
                indices=alpha_config.get('indices', constants.DEFAULT_ALPHA_INDICES)
            )
        except (DiversityError, ValueError) as e:
            self._record_failure("alpha_diversity", e)
            return
        self._write(records_to_frame(self.alpha_diversity), 'alpha_diversity', 'alpha_diversity.tsv')

        try:
            self.normality = normality_by_index(self.alpha_diversity)
        except DiversityError as e:
            self._record_failure("alpha_normality", e)

        parametric = alpha_config.get('parametric', constants.DEFAULT_PARAMETRIC)
        for group_column in self._present_group_columns(self.dataset.metadata):
            self._write(
                to_plot_records(self.alpha_diversity, self.dataset.metadata, group_column),
                'alpha_diversity', f'plot_records_{group_column}.tsv'
            )
            suite = analyze_alpha_diversity(
                self.alpha_diversity, self.dataset.metadata, group_column, parametric
            )
            self.alpha_stats[group_column] = suite
            self._write_suite(suite, 'alpha_diversity', f'stats_{group_column}.tsv')

    def _prune(self) -> None:
        threshold = self.config.get('abundance_filter', {}).get(
            'min_relative_abundance', constants.DEFAULT_MIN_REL_ABUNDANCE
        )
        pruned = prune_rare_taxa(self.dataset, threshold)
        if self.config.get('drop_empty_samples', True):
            pruned = pruned.drop_empty_samples()
        self.pruned = pruned

    def _run_distance(self) -> None:
        beta_config = self.config.get('beta_diversity', {})
        if not beta_config.get('enabled', True):
            logger.debug("Beta diversity analysis disabled.")
            return
        try:
            self.distance = compute_distance(
                self.pruned,
                method=beta_config.get('method', constants.DEFAULT_METRIC),
                seed=self.seed
            )
        except (DiversityError, ValueError) as e:
            self._record_failure("distance", e)
            return
        self._write(self.distance.to_frame(), 'beta_diversity', 'distance_matrix.tsv')

    def _run_ordination(self) -> None:
        if self.distance is None:
            return
        beta_config = self.config.get('beta_diversity', {})
        ordinator = SmacofNMDS(
            n_init=beta_config.get('n_init', constants.DEFAULT_N_INIT),
            max_iter=beta_config.get('max_iter', constants.DEFAULT_MAX_ITER),
            eps=beta_config.get('eps', constants.DEFAULT_EPS),
            n_jobs=beta_config.get('n_jobs', constants.DEFAULT_CPU_LIMIT),
        )
        try:
            self.ordination = ordinate(
                self.distance,
                n_dimensions=beta_config.get('n_dimensions', constants.DEFAULT_N_NMDS),
                seed=self.seed,
                ordinator=ordinator
            )
        except (DiversityError, ValueError) as e:
            self._record_failure("ordination", e)
            return
        self._write(self.ordination.coordinates, 'beta_diversity', 'nmds_coordinates.tsv')

    def _run_beta_tests(self) -> None:
        if self.distance is None:
            return
        beta_config = self.config.get('beta_diversity', {})
        metadata = self.pruned.metadata
        strata_column = beta_config.get('strata')
        strata = None
        if strata_column:
            if strata_column in metadata.columns:
                strata = metadata[strata_column]
            else:
                logger.warning(f"Strata column '{strata_column}' not found in metadata; ignored")

        options: Dict[str, Any] = dict(
            permutations=beta_config.get('permutations', constants.DEFAULT_PERMUTATIONS),
            seed=self.seed,
            pairwise=beta_config.get('pairwise', True),
            n_jobs=beta_config.get('n_jobs', constants.DEFAULT_CPU_LIMIT),
        )
        for group_column in self._present_group_columns(metadata):
            grouping = metadata[group_column]
            tests = {
                'permanova': partial(
                    permanova, self.distance, grouping,
                    strata=strata if strata_column != group_column else None, **options
                ),
                'permdisp': partial(permdisp, self.distance, grouping, **options),
            }
            suite = run_suite(tests, label=f"beta diversity ~ {group_column}")
            self.beta_stats[group_column] = suite
            self._write_suite(suite, 'beta_diversity', f'stats_{group_column}.tsv')
