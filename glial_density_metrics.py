"""

Author: Sailaja Kuruvada
Date: 2026

Glial Density Metric Builder

This script prepares the per-image GFAP / PDGFRβ measurements exported by the
segmentation pipeline for statistical analysis. It keeps the masked intensity and
area measurements, parses the experimental metadata encoded in the image filename,
derives a normalized integrated-density ratio (IntDen) per channel and saves the
clean table as the processed analysis artifact.

Key Features:
- Selection and renaming of the segmentation measurement columns
- Metadata parsing from filenames (MouseID, Genotype, Condition)
- Closed category sets for Genotype and Condition (unexpected values are errors)
- Normalized density per channel: (Area / Intensity) / 10000
- Atomic CSV export of the processed table
- Sham filtering for the modeling subset

Expected filename format: "<prefix>_<n>_<MouseID>_<Genotype>_<Condition>.<ext>"
Example: "img_001_M1_KO25_MCAO.tif"

OUTPUT RESULTS:
- CSV file: processed IntDen table (path set by the pipeline configuration)
  Columns: Pdgfrb_Intensity, Gfap_Intensity, Pdgfrb_Area, Gfap_Area, MouseID, Genotype, Condition, Pdgfrb_IntDen, Gfap_IntDen
  Format: One row per imaged section

Required Libraries and Versions:
- pandas>=1.5.0: Data manipulation library for reading the measurement CSV (pd.read_csv), categorical coercion (pd.Categorical) and CSV export (df.to_csv)
- numpy>=1.23.0: Numerical library used for the finite-value check (np.isfinite) and the zero-denominator mask (np.asarray) on the measurement columns
- re: Standard library for splitting filenames on underscore/dot delimiters (re.split)
- os: Standard library for file existence checks (os.path.exists) and basenames (os.path.basename)

"""

import os                             # Used for file existence checks (os.path.exists) and filename handling (os.path.basename)
import re                             # Used for splitting filenames on '_' and '.' delimiters (re.split)
from collections import namedtuple    # Used for the typed SampleKey record returned by the filename parser
import numpy as np                    # Used for the finite-value check (np.isfinite) and zero-denominator mask (np.asarray) before computing IntDen ratios
import pandas as pd                   # Used for reading measurements (pd.read_csv), categorical dtypes (pd.Categorical) and CSV export (df.to_csv)

from artifact_io import atomic_output

# ---- Parameters ----
FILENAME_COLUMN = "FileName_Gfap"
MEASUREMENT_COLUMNS = {
    "Intensity_MeanIntensity_Pdgfrb_Masked": "Pdgfrb_Intensity",
    "Intensity_MeanIntensity_Gfap_Masked": "Gfap_Intensity",
    "Intensity_TotalArea_Pdgfrb_Masked": "Pdgfrb_Area",
    "Intensity_TotalArea_Gfap_Masked": "Gfap_Area",
}
CHANNELS = ["Pdgfrb", "Gfap"]
GENOTYPES = ["Ctr25", "KO25"]         # First level is the reference genotype
CONDITIONS = ["Sham", "MCAO"]
SHAM_CONDITION = "Sham"
INTDEN_SCALE = 10000                  # IntDen = (Area / Intensity) / INTDEN_SCALE
FILENAME_DELIMITERS = r"[_.]"

CLEAN_COLUMNS = (
    list(MEASUREMENT_COLUMNS.values())
    + ["MouseID", "Genotype", "Condition"]
    + [f"{channel}_IntDen" for channel in CHANNELS]
)

SampleKey = namedtuple("SampleKey", ["mouse_id", "genotype", "condition"])


class ParseError(ValueError):
    """Filename does not decompose into the expected metadata segments."""


class CategoryError(ValueError):
    """Genotype or Condition value outside its closed category set."""


class DivisionError(ZeroDivisionError):
    """Zero intensity denominator in the IntDen ratio."""


# ---- Core Functions ----

def parse_sample_key(filename):
    """
    Parse metadata from an image filename based on the expected naming convention.

    The basename is split on underscores and dots; segments 3-5 hold the
    MouseID, Genotype and Condition.

    Args:
        filename (str): Image filename (a leading directory is ignored)

    Returns:
        SampleKey: (mouse_id, genotype, condition)

    Raises:
        ParseError: If the filename has fewer than 5 segments
    """
    name = os.path.basename(str(filename))
    tokens = re.split(FILENAME_DELIMITERS, name)
    if len(tokens) < 5:
        raise ParseError(
            f"Cannot parse metadata from filename '{filename}': expected at least 5 "
            f"'_'/'.'-separated segments (<prefix>_<n>_<MouseID>_<Genotype>_<Condition>.<ext>), "
            f"found {len(tokens)}"
        )
    return SampleKey(*tokens[2:5])


def coerce_categories(series, categories, column, labels=None):
    """
    Convert a column to an ordered categorical restricted to `categories`.

    Raises:
        CategoryError: Listing every unexpected value and the rows carrying it
    """
    values = series.astype(str).reset_index(drop=True)
    row_labels = (pd.Series(labels).reset_index(drop=True) if labels is not None
                  else pd.Series(series.index))
    unexpected = values[~values.isin(categories)]
    if not unexpected.empty:
        rows = ", ".join(f"{row_labels[idx]}: '{val}'" for idx, val in unexpected.items())
        raise CategoryError(
            f"Unexpected {column} value(s) (allowed: {', '.join(categories)}) -> {rows}"
        )
    return pd.Categorical(values, categories=categories, ordered=True)


def compute_intden(area, intensity, channel, labels=None):
    """
    Compute the normalized density ratio (Area / Intensity) / 10000 for one channel.

    Args:
        area (pandas.Series): Total masked area
        intensity (pandas.Series): Mean masked intensity
        channel (str): Channel name used in error messages
        labels (pandas.Series, optional): Row labels (filenames) for error messages

    Returns:
        pandas.Series: IntDen values

    Raises:
        DivisionError: If any intensity is zero
    """
    intensity = intensity.astype(float)
    zero_mask = np.asarray(intensity == 0)
    if zero_mask.any():
        bad = labels[zero_mask] if labels is not None else intensity.index[zero_mask]
        raise DivisionError(
            f"{channel}_Intensity is zero for {int(zero_mask.sum())} row(s), "
            f"cannot compute {channel}_IntDen: {', '.join(map(str, bad))}"
        )
    return (area.astype(float) / intensity) / INTDEN_SCALE


def build(raw_table):
    """
    Build the clean per-sample table from raw segmentation measurements.

    Args:
        raw_table (pandas.DataFrame): One row per image with FileName_Gfap and the
            four masked intensity/area columns (other columns are discarded)

    Returns:
        pandas.DataFrame: Clean table with CLEAN_COLUMNS in order
    """
    required = list(MEASUREMENT_COLUMNS) + [FILENAME_COLUMN]
    missing = [col for col in required if col not in raw_table.columns]
    if missing:
        raise KeyError(f"Input table is missing required column(s): {', '.join(missing)}")

    df = raw_table[required].rename(columns=MEASUREMENT_COLUMNS).reset_index(drop=True)

    # Blank, non-numeric or infinite measurements would propagate NaN into IntDen
    for column in MEASUREMENT_COLUMNS.values():
        values = pd.to_numeric(df[column], errors="coerce").astype(float)
        bad = ~np.isfinite(values)
        if bad.any():
            files = ", ".join(df.loc[bad, FILENAME_COLUMN].astype(str))
            raise ValueError(f"Non-finite {column} value(s) for: {files}")
        df[column] = values

    keys = [parse_sample_key(name) for name in df[FILENAME_COLUMN]]
    df["MouseID"] = [key.mouse_id for key in keys]
    df["Genotype"] = coerce_categories(
        pd.Series([key.genotype for key in keys]), GENOTYPES, "Genotype",
        labels=df[FILENAME_COLUMN])
    df["Condition"] = coerce_categories(
        pd.Series([key.condition for key in keys]), CONDITIONS, "Condition",
        labels=df[FILENAME_COLUMN])

    for channel in CHANNELS:
        df[f"{channel}_IntDen"] = compute_intden(
            df[f"{channel}_Area"], df[f"{channel}_Intensity"], channel,
            labels=df[FILENAME_COLUMN],
        )

    return df[CLEAN_COLUMNS]


def load_raw_measurements(csv_path):
    """Read the segmentation export; a missing file is a hard error."""
    if not os.path.exists(csv_path):
        raise FileNotFoundError(f"Raw measurement file not found: {csv_path}")
    return pd.read_csv(csv_path)


def save_clean_table(clean_table, output_csv):
    """Atomically write the clean table as CSV (no index)."""
    with atomic_output(output_csv) as tmp_path:
        clean_table.to_csv(tmp_path, index=False)
    return output_csv


def load_clean_table(csv_path):
    """
    Read a processed table back and restore the categorical columns.

    Category sets are re-validated so a hand-edited artifact cannot slip
    unexpected groups into the models.
    """
    if not os.path.exists(csv_path):
        raise FileNotFoundError(f"Processed table not found: {csv_path}")
    df = pd.read_csv(csv_path, dtype={"MouseID": str})
    df["Genotype"] = coerce_categories(df["Genotype"], GENOTYPES, "Genotype")
    df["Condition"] = coerce_categories(df["Condition"], CONDITIONS, "Condition")
    return df


def model_subset(clean_table):
    """Rows used for modeling: every condition except Sham."""
    return clean_table[clean_table["Condition"] != SHAM_CONDITION].reset_index(drop=True)


def group_counts(clean_table):
    """Number of sections per Genotype x Condition."""
    return clean_table.groupby(["Genotype", "Condition"], observed=False).size()


def build_from_csv(input_csv, output_csv):
    """
    Read raw measurements, build the clean table and persist it.

    Args:
        input_csv (str): Segmentation export (one row per image)
        output_csv (str): Versioned processed artifact path

    Returns:
        pandas.DataFrame: The clean table that was written
    """
    raw = load_raw_measurements(input_csv)
    print(f"Loaded {len(raw)} image measurements from {input_csv}")

    clean = build(raw)
    save_clean_table(clean, output_csv)
    print(f"📊 Processed table saved to: {output_csv}")

    print(f"\nData breakdown:")
    print(group_counts(clean))
    return clean
