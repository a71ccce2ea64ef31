"""
16S Diversity Analysis Pipeline
----------------------------------------------------------------------------------------
Community diversity analysis of 16S rRNA amplicon data: builds a consistent dataset
from an abundance table, a taxonomy table and sample metadata, removes contaminant
and rare taxa, and computes alpha/beta diversity with the accompanying statistics.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Union

# Third-Party Imports
import pandas as pd

# Local Imports
sys.path.append(str(Path(__file__).resolve().parent))

from diversity_16s import constants
from diversity_16s.amplicon_data.analysis import AmpliconAnalysis
from diversity_16s.amplicon_data.dataset import CommunityDataset, build
from diversity_16s.config import get_config
from diversity_16s.logger import setup_logging
from diversity_16s.utils.taxonomy import parse_taxonomy

# ========================== INITIALIZATION & CONFIGURATION ========================== #

pd.set_option('display.max_colwidth', None)

logger = logging.getLogger("diversity_16s")

# ================================== INPUT LOADING =================================== #

def load_taxonomy_tsv(path: Union[str, Path]) -> pd.DataFrame:
    """Read a taxonomy table with either rank columns or a QIIME ``Taxon`` column."""
    taxonomy = pd.read_csv(path, sep='\t', index_col=0, dtype=str)
    if 'Taxon' in taxonomy.columns:
        parsed = parse_taxonomy(taxonomy['Taxon'])
        extra = taxonomy.drop(columns=['Taxon'])
        extra = extra[[c for c in extra.columns if c not in parsed.columns]]
        return pd.concat([parsed, extra], axis=1)
    return taxonomy


def load_inputs(inputs: Dict) -> CommunityDataset:
    """Load the abundance, taxonomy and metadata TSV files named in the config.

    The abundance table is read as samples × taxa with sample IDs in the first
    column.
    """
    missing = [k for k in ('abundance', 'taxonomy', 'metadata') if not inputs.get(k)]
    if missing:
        raise ValueError(f"Missing input paths in config: {missing}")

    abundance = pd.read_csv(inputs['abundance'], sep='\t', index_col=0)
    taxonomy = load_taxonomy_tsv(inputs['taxonomy'])
    metadata = pd.read_csv(inputs['metadata'], sep='\t')

    id_column = inputs.get('sample_id_column')
    if id_column not in metadata.columns:
        id_column = metadata.columns[0]
    logger.info(
        f"Loaded abundance {abundance.shape}, taxonomy {taxonomy.shape}, "
        f"metadata {metadata.shape}"
    )
    return build(abundance, taxonomy, metadata, meta_id_col=id_column)

# =================================== MAIN WORKFLOW ================================== #

class DiversityWorkflow:
    def __init__(
        self,
        config_path: Optional[Path] = constants.DEFAULT_CONFIG_PATH,
        resume: bool = True
    ) -> None:
        self.config = get_config(config_path)
        self.logger = setup_logging(self.config.get("log_dir", constants.DEFAULT_LOG_DIR))
        self.resume = resume

    def run(self) -> AmpliconAnalysis:
        """Execute the pipeline; input or alignment errors abort the run."""
        try:
            analysis = AmpliconAnalysis(
                self.config,
                loader=lambda: load_inputs(self.config.get("inputs", {})),
                output_dir=self.config.get("output_dir", constants.DEFAULT_OUTPUT_DIR),
                resume=self.resume
            )
            return analysis.run()
        except Exception as e:
            self.logger.critical(f"Fatal pipeline error: {e}", exc_info=True)
            raise


def main(config_path: Path = constants.DEFAULT_CONFIG_PATH, resume: bool = True) -> None:
    """Run the entire workflow."""
    workflow = DiversityWorkflow(config_path, resume=resume)
    workflow.run()


if __name__ == "__main__":
    # Get custom config.yaml file from system arguments
    parser = argparse.ArgumentParser(description="Run 16S diversity workflow.")
    parser.add_argument(
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help="Path to the configuration file.",
    )
    parser.add_argument(
        "--no-resume",
        action="store_true",
        help="Rebuild the filtered dataset even if a snapshot exists.",
    )
    args = parser.parse_args()
    main(args.config, resume=not args.no_resume)
