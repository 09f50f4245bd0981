"""Shared configuration for the nitrogen-fixation analysis modules."""

from pathlib import Path

# ── Paths ──────────────────────────────────────────────────────────
ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = ROOT / "data"
MAP_CSV = DATA_DIR / "map.csv"
WORLD_CSV = DATA_DIR / "world.csv"
BOXPLOT_CSV = DATA_DIR / "boxplot.csv"
SAND_CSV = DATA_DIR / "Sand.csv"
MYDATA_CSV = ROOT / "mydata.csv"
FOREST_CSV = ROOT / "forest.csv"
OUTPUT_DIR = Path(__file__).resolve().parent / "output"

# Output file names (written under OUTPUT_DIR)
MAP_PDF = "map_clean.pdf"
BOX_PDF = "box_new.pdf"
REGRESSION_PDF = "Sand3.pdf"
VP_COVARIATES_PDF = "vp_covariates.pdf"
VP_GROUPS_PDF = "vp_groups.pdf"
REPORT_TXT = "nfix_report.txt"

# ── Ecosystem style ────────────────────────────────────────────────
# Same encoding in every figure; passed explicitly to each plot call.
ECOSYSTEM_TYPES = ["Cropland", "Grassland", "Wetland", "Forest"]

ECOSYSTEM_SHAPES = {
    "Cropland": "o",
    "Grassland": "^",
    "Wetland": "s",
    "Forest": "D",
}

ECOSYSTEM_COLORS = {
    "Cropland": "#E69F00",
    "Grassland": "#009E73",
    "Wetland": "#0072B2",
    "Forest": "#7A4E2D",
}

# ── Figure geometry (inches) ───────────────────────────────────────
MAP_FIGSIZE = (8.0, 4.5)
BOX_FIGSIZE = (5.0, 4.0)
REGRESSION_FIGSIZE = (9.0, 3.2)
PDF_DPI = 300

# ── Statistical parameters ─────────────────────────────────────────
ALPHA = 0.05
SEED = 42

# Mixed-effects regression
MIXED_FORMULA = "NF ~ C"
MIXED_GROUP_COL = "SiteID"
MIXED_OPTIMIZER = "powell"  # derivative-free

# Random forest
RF_TARGET = "nifH"
RF_N_ESTIMATORS = 1000
RF_N_REPEATS = 10

# ── Joint species distribution model ───────────────────────────────
JSDM_PLOT_COL = "plot"
JSDM_RESPONSE_INDEX = 19  # 20th column of forest.csv

JSDM_COVARIATES = [
    # climate
    "MAT", "MAP",
    # soil physicochemistry
    "pH", "SWC", "BD", "Clay", "Silt", "Sand",
    "SOC", "TN", "TP", "NH4", "NO3",
    # stoichiometry
    "C_N", "C_P", "N_P", "MBC_MBN",
    # target gene
    "nifH",
]

JSDM_GROUP_ASSIGNMENT = [1, 1, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2, 3, 3, 3, 3, 4]
JSDM_GROUP_NAMES = ["Climate", "Soil physicochemistry", "Stoichiometry", "nifH"]
JSDM_RANDOM_LABEL = "Random: plot"

# MCMC sampler
MCMC_SAMPLES = 205
MCMC_THIN = 1
MCMC_TRANSIENT = int(0.5 * MCMC_SAMPLES)
MCMC_ADAPT_NF = int(0.4 * MCMC_SAMPLES)
MCMC_CHAINS = 4
MCMC_CORES = 4
