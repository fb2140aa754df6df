from pydantic import BaseModel, ConfigDict, Field

MIN_LEAF_GAP_MM = 0.505
MAX_APERTURE_AREA_MM2 = 120000  # 400 x 300 mm^2, the largest jaw opening
DEFAULT_HISTOGRAM_BIN_SIZE_MM2 = 200


class ComplexitySettings(BaseModel):
    """Tunable parameters of the aperture reconstruction and of the metrics."""

    model_config = ConfigDict(frozen=True)

    min_leaf_gap_mm: float = Field(
        default=MIN_LEAF_GAP_MM,
        gt=0,
        title="Minimum Leaf Gap",
        description="Leaf pair openings at or below this value are considered closed.",
        json_schema_extra={"units": "mm"},
    )
    histogram_bin_size_mm2: int = Field(
        default=DEFAULT_HISTOGRAM_BIN_SIZE_MM2,
        gt=0,
        title="Histogram Bin Size",
        description="The bin width of the aperture area histogram.",
        json_schema_extra={"units": "mm^2"},
    )
    max_aperture_area_mm2: int = Field(
        default=MAX_APERTURE_AREA_MM2,
        gt=0,
        title="Maximum Aperture Area",
        description="The upper bound of the aperture area histogram.",
        json_schema_extra={"units": "mm^2"},
    )


DEFAULT_SETTINGS = ComplexitySettings()
