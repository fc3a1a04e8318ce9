"""
BTC价格预测引擎 - 主入口
================================
提供命令行接口导入历史数据、计算归一化统计量和运行预测

使用方法:
    # 导入历史数据
    python main.py --import-prices data/btc_1h.csv
    python main.py --import-hashrate data/hashrate.csv --import-difficulty data/difficulty.csv

    # 计算并保存归一化统计量
    python main.py --compute-stats

    # 单次1小时预测 (--store 保存到数据库)
    python main.py --predict --store

    # 1h / 24h / 7d 多周期预测
    python main.py --multi
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# 添加项目路径
sys.path.insert(0, str(Path(__file__).parent))

from config import ModelConfig, TradingConfig, STATS_DIR
from config.logging_config import setup_logging
from btc_predictor.errors import PredictorError
from btc_predictor.data_collection import HistoryStore, load_price_csv, load_metric_csv
from btc_predictor.features import StatisticsComputer, save_stats
from btc_predictor.prediction import PredictionService, HorizonExtrapolator

logger = logging.getLogger(__name__)


def run_import(store: HistoryStore, args) -> None:
    """导入CSV历史数据"""
    if args.import_prices:
        points = load_price_csv(Path(args.import_prices), symbol=args.symbol, price_column=args.price_column)
        inserted = store.save_prices(points)
        logger.info(f"价格导入完成: {inserted}/{len(points)} 条新记录")

    for kind, path in (("hashrate", args.import_hashrate), ("difficulty", args.import_difficulty)):
        if path:
            points = load_metric_csv(Path(path))
            inserted = store.save_metrics(kind, points)
            logger.info(f"{kind} 导入完成: {inserted}/{len(points)} 条新记录")


def run_compute_stats(store: HistoryStore, symbol: str, output_dir: Path = STATS_DIR) -> Path:
    """
    计算并保存归一化统计量

    写入 output_dir 而不是推理端使用的 ModelConfig.STATS_PATH:
    已部署模型与其训练时的统计量指纹绑定，新统计量需通过 train.py 重新训练后才会生效
    """
    stats = StatisticsComputer(store).compute_stats(symbol)
    path = save_stats(stats, output_dir)
    logger.info(f"统计量已写入 {path}")
    logger.info(f"推理端统计量 {ModelConfig.STATS_PATH} 未改动，使用新统计量需重新构建数据集并训练")
    return path


def run_prediction(store: HistoryStore, symbol: str, horizon: str, persist: bool) -> None:
    """运行单次预测"""
    logger.info("=" * 50)
    logger.info(f"BTC {horizon} 价格预测")
    logger.info("=" * 50)

    service = PredictionService(store, sink=store, symbol=symbol)
    try:
        service.initialize()

        if persist:
            prediction, result = service.predict_and_store(horizon)
            logger.info(f"保存结果: {result.status.value}" + (f" ({result.reason})" if result.reason else ""))
        else:
            prediction = service.predict_price(horizon)

        print(json.dumps(prediction.to_dict(), indent=2, ensure_ascii=False))
    finally:
        service.dispose()


def run_multi_horizon(store: HistoryStore, symbol: str) -> None:
    """运行多周期预测"""
    service = PredictionService(store, symbol=symbol)
    try:
        service.initialize()

        forecast = HorizonExtrapolator(service).predict_multiple_horizons()
        print(json.dumps(forecast.to_dict(), indent=2, ensure_ascii=False))
    finally:
        service.dispose()


def run_info(store: HistoryStore, symbol: str) -> None:
    """显示模型信息"""
    service = PredictionService(store, symbol=symbol)
    try:
        service.initialize()
    except PredictorError as e:
        logger.warning(f"模型不可用: {e}")
    try:
        print(json.dumps(service.get_model_info(), indent=2, ensure_ascii=False, default=str))
    finally:
        service.dispose()


def main():
    """主函数"""
    parser = argparse.ArgumentParser(
        description='BTC价格预测引擎',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  导入价格:           python main.py --import-prices data/btc_1h.csv
  计算统计量:         python main.py --compute-stats
  1小时预测并保存:    python main.py --predict --store
  多周期预测:         python main.py --multi
        """
    )

    parser.add_argument('--symbol', type=str, default=TradingConfig.SYMBOL,
                       help='资产符号')
    parser.add_argument('--db', type=str, default=None,
                       help='SQLite数据库路径')
    parser.add_argument('--import-prices', type=str, default=None,
                       help='导入价格CSV (timestamp + 价格列)')
    parser.add_argument('--price-column', type=str, default='close',
                       help='价格CSV中的价格列名')
    parser.add_argument('--import-hashrate', type=str, default=None,
                       help='导入算力CSV (timestamp, value)')
    parser.add_argument('--import-difficulty', type=str, default=None,
                       help='导入难度CSV (timestamp, value)')
    parser.add_argument('--compute-stats', action='store_true',
                       help='计算归一化统计量并写入 STATS_DIR (不替换推理端统计量)')
    parser.add_argument('--predict', action='store_true',
                       help='运行单次预测')
    parser.add_argument('--horizon', type=str, default='1h',
                       choices=list(TradingConfig.HORIZONS),
                       help='预测窗口')
    parser.add_argument('--store', action='store_true',
                       help='保存预测结果到数据库')
    parser.add_argument('--multi', action='store_true',
                       help='1h / 24h / 7d 多周期预测')
    parser.add_argument('--info', action='store_true',
                       help='显示模型信息')

    args = parser.parse_args()

    setup_logging("btc_predictor")

    importing = args.import_prices or args.import_hashrate or args.import_difficulty
    if not (importing or args.compute_stats or args.predict or args.multi or args.info):
        parser.print_help()
        print("\n快速开始:")
        print("  1. 导入数据:   python main.py --import-prices data/btc_1h.csv")
        print("  2. 构建并训练: python train.py --build-dataset --train")
        print("  3. 单次预测:   python main.py --predict")
        return

    try:
        store = HistoryStore(Path(args.db) if args.db else None)

        if importing:
            run_import(store, args)
        if args.compute_stats:
            run_compute_stats(store, args.symbol)
        if args.predict:
            run_prediction(store, args.symbol, args.horizon, args.store)
        if args.multi:
            run_multi_horizon(store, args.symbol)
        if args.info:
            run_info(store, args.symbol)
    except PredictorError as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        sys.exit(1)
    except (OSError, ValueError) as e:
        logger.error(f"❌ {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
