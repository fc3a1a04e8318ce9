"""离线训练数据集模块"""
from .builder import (
    TrainingSample,
    BuildReport,
    DatasetSplits,
    DatasetBuilder,
    fisher_yates_shuffle,
    split_sizes,
    samples_to_arrays,
    target_summary,
    load_manifest,
    load_split
)

__all__ = [
    "TrainingSample",
    "BuildReport",
    "DatasetSplits",
    "DatasetBuilder",
    "fisher_yates_shuffle",
    "split_sizes",
    "samples_to_arrays",
    "target_summary",
    "load_manifest",
    "load_split"
]
