"""
模型训练脚本
================================
构建训练数据集并训练BiLSTM价格变化回归模型

使用方法:
    python train.py --build-dataset
    python train.py --train --epochs 100
    python train.py --build-dataset --train --seed 42
"""

import argparse
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import numpy as np

# 添加项目路径
sys.path.insert(0, str(Path(__file__).parent))

from config import ModelConfig, TradingConfig, FeatureConfig, DatasetConfig, DATASET_DIR, DAY_MS
from config.logging_config import get_training_logger
from btc_predictor.errors import PredictorError
from btc_predictor.data_collection import HistoryStore
from btc_predictor.features import StatisticsComputer, FeatureExtractor, NormalizationStats, save_stats, load_stats
from btc_predictor.features.statistics import STATS_FILENAME
from btc_predictor.dataset import DatasetBuilder, load_manifest, load_split
from btc_predictor.models import BiLSTMRegressor, write_model_metadata
from btc_predictor.validation import RegressionMetrics

logger = logging.getLogger(__name__)


def build_dataset(store: HistoryStore, symbol: str, output_dir: Path, seed=None, show_progress: bool = True) -> Path:
    """计算统计量、生成样本并保存划分 (统计量随数据集保存，训练完成后才发布给推理端)"""
    logger.info("🏗️ 构建LSTM训练数据集...")

    stats = StatisticsComputer(store).compute_stats(symbol)

    now = int(datetime.now(timezone.utc).timestamp() * 1000)
    start = now - FeatureConfig.STATS_WINDOW_DAYS * DAY_MS
    prices = store.get_price_history(symbol, start, now, FeatureConfig.STATS_PRICE_LIMIT)
    logger.info(f"📊 找到 {len(prices)} 条价格记录")

    builder = DatasetBuilder(
        FeatureExtractor(store, stats),
        symbol=symbol,
        seed=seed,
        show_progress=show_progress
    )
    splits = builder.build(prices)
    return builder.save(splits, output_dir)


def verify_dataset_stats(dataset_dir: Path, manifest: dict) -> NormalizationStats:
    """加载数据集目录中的统计量，指纹与清单不一致时抛出 PredictorError"""
    stats = load_stats(Path(dataset_dir) / manifest.get("stats_file", STATS_FILENAME))
    if stats.fingerprint() != manifest["stats_fingerprint"]:
        raise PredictorError("数据集统计量文件与清单指纹不一致")
    return stats


def publish_stats(stats: NormalizationStats, stats_path: Optional[Path] = None) -> Path:
    """写入推理端读取的统计量文件，默认 ModelConfig.STATS_PATH (目录与文件名都以其为准)"""
    stats_path = Path(stats_path or ModelConfig.STATS_PATH)
    return save_stats(stats, stats_path.parent, stats_path.name)


def train_model(dataset_dir: Path, epochs: int, batch_size: int, device=None):
    """训练并评估BiLSTM模型"""
    manifest = load_manifest(dataset_dir)
    fingerprint = manifest["stats_fingerprint"]

    # 推理端统计量需与训练时一致，训练前先校验
    served_stats = verify_dataset_stats(dataset_dir, manifest)

    train = load_split(dataset_dir, "train")
    val = load_split(dataset_dir, "val")
    test = load_split(dataset_dir, "test")

    X_train, y_train = train["X"], train["y"]
    X_val, y_val = val["X"], val["y"]
    X_test, y_test = test["X"], test["y"]

    logger.info(f"数据形状: 训练 {X_train.shape} | 验证 {X_val.shape} | 测试 {X_test.shape}")

    model = BiLSTMRegressor(device=device, epochs=epochs, batch_size=batch_size)
    model.build(input_shape=(X_train.shape[1], X_train.shape[2]))

    start = time.time()
    history = model.train(X_train, y_train, X_val, y_val)
    training_minutes = (time.time() - start) / 60

    # 评估
    y_pred = model.predict(X_test)
    metrics = RegressionMetrics.calculate(y_test, y_pred, current_price=test["current_price"])
    RegressionMetrics.log_metrics(metrics, "BiLSTM")

    model.save(ModelConfig.MODEL_PATH, extra={
        'model_id': ModelConfig.MODEL_ID,
        'model_type': ModelConfig.MODEL_TYPE,
        'stats_fingerprint': fingerprint
    })

    publish_stats(served_stats)

    val_losses = history.get('val_loss') or []
    write_model_metadata({
        'model_id': ModelConfig.MODEL_ID,
        'trained_at': datetime.now(timezone.utc).isoformat(),
        'training_time': f"{training_minutes:.2f} minutes",
        'stats_fingerprint': fingerprint,
        'dataset': {
            'train': int(len(X_train)),
            'validation': int(len(X_val)),
            'test': int(len(X_test)),
            'lookback': manifest.get('lookback'),
            'horizon': manifest.get('horizon')
        },
        'hyperparameters': {
            'epochs': epochs,
            'epochs_trained': len(history.get('train_loss') or []),
            'batch_size': batch_size,
            'learning_rate': ModelConfig.LEARNING_RATE,
            'architecture': f"Bidirectional LSTM ({model.lstm1_units}+{model.lstm2_units} units)"
        },
        'performance': {
            'test_loss': metrics['mse'],
            'test_mae': metrics['mae'],
            'test_rmse': metrics['rmse'],
            'test_mape': metrics.get('price_mape'),
            'direction_accuracy': metrics['direction_accuracy'],
            'best_val_loss': float(np.min(val_losses)) if val_losses else None
        }
    })

    return model, metrics


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description='训练BTC价格预测模型')
    parser.add_argument('--build-dataset', action='store_true',
                       help='从历史数据构建训练数据集')
    parser.add_argument('--train', action='store_true',
                       help='训练BiLSTM模型')
    parser.add_argument('--symbol', type=str, default=TradingConfig.SYMBOL,
                       help='资产符号')
    parser.add_argument('--db', type=str, default=None,
                       help='SQLite数据库路径')
    parser.add_argument('--dataset-dir', type=str, default=str(DATASET_DIR),
                       help='数据集目录')
    parser.add_argument('--epochs', type=int, default=ModelConfig.EPOCHS,
                       help='训练轮数')
    parser.add_argument('--batch_size', type=int, default=ModelConfig.BATCH_SIZE,
                       help='批次大小')
    parser.add_argument('--seed', type=int, default=DatasetConfig.SHUFFLE_SEED,
                       help='洗牌随机种子')
    parser.add_argument('--device', type=str, default=ModelConfig.DEVICE,
                       help='训练设备 (cpu / cuda)')
    parser.add_argument('--no-progress', action='store_true',
                       help='不显示进度条')

    args = parser.parse_args()

    if not (args.build_dataset or args.train):
        parser.print_help()
        return

    get_training_logger()
    dataset_dir = Path(args.dataset_dir)

    try:
        if args.build_dataset:
            store = HistoryStore(Path(args.db) if args.db else None)
            build_dataset(store, args.symbol, dataset_dir, seed=args.seed, show_progress=not args.no_progress)
        if args.train:
            train_model(dataset_dir, args.epochs, args.batch_size, device=args.device)
    except PredictorError as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        sys.exit(1)
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"❌ 训练失败: {e}")
        sys.exit(1)

    logger.info("✅ 完成")


if __name__ == "__main__":
    main()
