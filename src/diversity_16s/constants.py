from pathlib import Path

# ==================================================================================== #
# PROGRESS BAR
# ==================================================================================== #
# See supported colors at: https://www.w3schools.com/colors/colors_x11.asp

# Total character width of the progress bar text
DEFAULT_PROGRESS_TEXT_N: int = 65
# Color of the progress bar description text
DEFAULT_DESCRIPTION_STYLE: str = "white"
# Width of the progress bar
DEFAULT_BAR_WIDTH: int = 40
# Color of the filled/complete portion of the progress bar
DEFAULT_BAR_COLUMN_COMPLETE_STYLE: str = "honeydew2"
# Color used when the progress bar is finished
DEFAULT_FINISHED_STYLE: str = "dark_cyan"
# Color of the percentage complete text (e.g., "85%")
DEFAULT_PROGRESS_PERCENTAGE_STYLE: str = "honeydew2"
# Color of the stage count text (e.g., "stage 3 of 6")
DEFAULT_M_OF_N_COMPLETE_STYLE: str = "honeydew2"

# ==================================================================================== #
# SETTINGS
# ==================================================================================== #
# Go up two levels
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "references" / "config.yaml"
DEFAULT_LOG_DIR = "logs"
DEFAULT_OUTPUT_DIR = "output"

# ==================================================================================== #
# METADATA
# ==================================================================================== #
DEFAULT_META_ID_COLUMN = '#sampleid'
DEFAULT_GROUP_COLUMN = 'body.site'
DEFAULT_GROUP_COLUMNS = ['body.site', 'subject', 'reported.antibiotic.usage']

# ==================================================================================== #
# TAXONOMY
# ==================================================================================== #
TAXONOMIC_RANKS = [
    'Domain', 'Phylum', 'Class', 'Order', 'Family', 'Genus', 'Species'
]
RANK_PREFIXES = {
    'd': 'Domain', 'k': 'Domain', 'p': 'Phylum', 'c': 'Class', 'o': 'Order',
    'f': 'Family', 'g': 'Genus', 's': 'Species'
}
UNASSIGNED_LABELS = {'Unassigned', 'Unclassified'}
SEQUENCE_COLUMN = 'Sequence'
ORIGINAL_ID_COLUMN = 'OriginalId'
FEATURE_PREFIX = 'ASV'
MIN_SEQUENCE_LENGTH = 20

DEFAULT_EXCLUDED_FAMILIES = ['Mitochondria']
DEFAULT_EXCLUDED_ORDERS = ['Chloroplast']
DEFAULT_REQUIRED_DOMAIN = None
DEFAULT_KEEP_MISSING_RANKS = True

# ==================================================================================== #
# FILTERING
# ==================================================================================== #
DEFAULT_MIN_REL_ABUNDANCE: float = 5e-5

# ==================================================================================== #
# SNAPSHOTS
# ==================================================================================== #
DEFAULT_SNAPSHOT_DIR = "snapshots"
DEFAULT_SNAPSHOT_KEY = "filtered_dataset"

# ==================================================================================== #
# ALPHA DIVERSITY
# ==================================================================================== #
DEFAULT_ALPHA_INDICES = ['observed_features', 'shannon', 'simpson']

# ==================================================================================== #
# BETA DIVERSITY
# ==================================================================================== #
DEFAULT_METRIC = 'braycurtis'
DEFAULT_N_NMDS = 2
DEFAULT_N_INIT = 10
DEFAULT_MAX_ITER = 300
DEFAULT_EPS = 1e-6
DEFAULT_RANDOM_STATE = None
DEFAULT_CPU_LIMIT = 1

# ==================================================================================== #
# STATISTICS
# ==================================================================================== #
DEFAULT_PERMUTATIONS: int = 999
DEFAULT_PERMUTATION_BLOCK: int = 100
DEFAULT_P_ADJUST: str = 'holm'
DEFAULT_PARAMETRIC: bool = False
