"""
BTC 价格预测引擎配置文件
包含所有可配置参数：路径、特征窗口、模型参数、置信度校准常量、数值回退值等
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# 加载环境变量
load_dotenv()

# ===== 路径配置 =====
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("BTC_PREDICTOR_DATA_DIR", BASE_DIR / "data"))
MODELS_DIR = Path(os.getenv("BTC_PREDICTOR_MODELS_DIR", DATA_DIR / "models"))
DATASET_DIR = Path(os.getenv("BTC_PREDICTOR_DATASET_DIR", DATA_DIR / "dataset"))
# --compute-stats 输出目录，与推理端使用的统计量文件分开
STATS_DIR = Path(os.getenv("BTC_PREDICTOR_STATS_DIR", DATA_DIR / "stats"))
LOGS_DIR = BASE_DIR / "logs"

# ===== 数据库配置 =====
DATABASE_PATH = Path(os.getenv("BTC_PREDICTOR_DB", DATA_DIR / "btc_history.db"))

# 每个周期的毫秒数（小时级数据）
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


# ===== 交易对配置 =====
class TradingConfig:
    SYMBOL = os.getenv("BTC_PREDICTOR_SYMBOL", "BTC")

    # 采样周期（毫秒）
    PERIOD_MS = HOUR_MS

    # 支持的预测时间窗口
    HORIZONS = ("1h", "24h", "7d")

    # 预测窗口对应的时间偏移（毫秒）
    HORIZON_MS = {
        "1h": HOUR_MS,
        "24h": DAY_MS,
        "7d": 7 * DAY_MS,
    }


# ===== 特征配置 =====
class FeatureConfig:
    # 输入序列长度（时间步）
    LOOKBACK = 60

    # 最长指标需要的额外数据点 (log_return_24h / sma_24h)
    LONGEST_INDICATOR = 24

    # 对数收益率回溯周期
    RETURN_PERIODS = (1, 4, 24)

    SMA_WINDOW = 24
    VOLATILITY_WINDOW = 24
    RSI_PERIOD = 14

    # 归一化统计窗口
    STATS_WINDOW_DAYS = 365
    STATS_PRICE_LIMIT = 10000
    STATS_ONCHAIN_LIMIT = 1000

    # 特征顺序即张量中的列顺序，训练与推理必须一致
    FEATURE_NAMES = (
        "log_return_1h",
        "log_return_4h",
        "log_return_24h",
        "sma_24h",
        "volatility_24h",
        "rsi_14",
        "hashrate_normalized",
        "difficulty_normalized",
        "hour_sin",
        "day_cos",
    )
    N_FEATURES = len(FEATURE_NAMES)


# ===== 数值回退值 =====
class FallbackConfig:
    # 数据不足 / 除零时的特征值
    ZERO_FEATURE = 0.0

    # 平均亏损为0时的RSI
    RSI_NO_LOSS = 100.0

    # 数据不足14步时的归一化RSI (RSI=50)
    RSI_NEUTRAL_NORMALIZED = 0.0

    # 方差为0或序列为空时的标准差
    DEFAULT_STD = 1.0

    # min-max 区间为0时的归一化值
    ZERO_RANGE_SCALED = 0.0


# ===== 模型配置 =====
class ModelConfig:
    MODEL_ID = os.getenv("BTC_PREDICTOR_MODEL_ID", "lstm_btc_1h_v1")
    MODEL_TYPE = "Bidirectional LSTM"

    MODEL_PATH = Path(os.getenv("BTC_PREDICTOR_MODEL_PATH", MODELS_DIR / "lstm_btc_best.pth"))
    STATS_PATH = Path(os.getenv("BTC_PREDICTOR_STATS_PATH", MODELS_DIR / "feature-stats.json"))
    METADATA_PATH = MODELS_DIR / "training-metadata.json"

    # BiLSTM 结构
    LSTM1_UNITS = 50
    LSTM2_UNITS = 25
    DENSE_UNITS = 16
    LSTM_DROPOUT = 0.2
    DENSE_DROPOUT = 0.1

    # 训练参数
    BATCH_SIZE = 32
    LEARNING_RATE = 0.001
    WEIGHT_DECAY = 1e-5
    EPOCHS = 100
    EARLY_STOPPING_PATIENCE = 10

    # 设备配置 (None = 自动选择)
    DEVICE = os.getenv("BTC_PREDICTOR_DEVICE") or None

    # 推理原语不可重入时串行化调用
    SERIALIZE_INFERENCE = os.getenv("BTC_PREDICTOR_SERIALIZE_INFERENCE", "0") == "1"


# ===== 置信度校准配置 =====
class CalibrationConfig:
    # 启发式常量，保持与线上一致，不作为可调超参数
    # horizon: (波动率乘数, 不确定区间半宽乘数, 置信度上限)
    HORIZON_CALIBRATION = {
        "1h": (10.0, 2.0, 0.95),
        "24h": (15.0, 4.0, 0.8),
        "7d": (20.0, 8.0, 0.6),
    }
    MIN_CONFIDENCE = 0.1

    # 由1h收益率复利外推的步数
    HORIZON_STEPS = {
        "1h": 1,
        "24h": 24,
        "7d": 168,
    }

    # 市场状态
    RSI_OVERBOUGHT = 70.0
    RSI_OVERSOLD = 30.0
    HIGH_VOLATILITY = 0.03
    LOW_VOLATILITY = 0.01


# ===== 训练数据集配置 =====
class DatasetConfig:
    # 预测未来几个周期
    HORIZON = 1

    TRAIN_RATIO = 0.70
    VAL_RATIO = 0.15

    # 原始序列至少需要 lookback + horizon + MIN_EXTRA_POINTS 个点
    MIN_EXTRA_POINTS = 100

    # 每个划分的最小样本数
    MIN_SPLIT_SAMPLES = 1

    SHUFFLE_SEED = int(os.environ["BTC_PREDICTOR_SHUFFLE_SEED"]) if os.getenv("BTC_PREDICTOR_SHUFFLE_SEED") else None

    SPLIT_NAMES = ("train", "val", "test")


# ===== 日志配置 =====
class LogConfig:
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE = LOGS_DIR / "btc_predictor.log"
