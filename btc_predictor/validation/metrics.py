"""
回归评估指标
================================
评估价格变化比例预测: MSE / RMSE / MAE / R² / 方向准确率，
提供当前价格时附加还原价格后的 MAPE
"""

import logging
from typing import Dict, Optional

import numpy as np
from sklearn.metrics import (
    mean_absolute_error,
    mean_absolute_percentage_error,
    mean_squared_error,
    r2_score
)

logger = logging.getLogger(__name__)


class RegressionMetrics:
    """价格变化回归指标"""

    @staticmethod
    def direction_accuracy(y_true: np.ndarray, y_pred: np.ndarray) -> float:
        """涨跌方向一致的比例"""
        y_true = np.asarray(y_true).reshape(-1)
        y_pred = np.asarray(y_pred).reshape(-1)
        if y_true.size == 0:
            return 0.0
        return float(((y_true > 0) == (y_pred > 0)).mean())

    @staticmethod
    def calculate(
        y_true: np.ndarray,
        y_pred: np.ndarray,
        current_price: Optional[np.ndarray] = None
    ) -> Dict[str, float]:
        """
        计算回归指标

        Args:
            y_true: 真实价格变化比例
            y_pred: 预测价格变化比例
            current_price: 样本当前价格 (可选，用于计算价格MAPE)

        Returns:
            指标字典
        """
        y_true = np.asarray(y_true, dtype=np.float64).reshape(-1)
        y_pred = np.asarray(y_pred, dtype=np.float64).reshape(-1)
        if y_true.size == 0:
            raise ValueError("评估样本为空")

        mse = mean_squared_error(y_true, y_pred)
        metrics = {
            'mse': float(mse),
            'rmse': float(np.sqrt(mse)),
            'mae': float(mean_absolute_error(y_true, y_pred)),
            'r2': float(r2_score(y_true, y_pred)) if y_true.size > 1 else 0.0,
            'direction_accuracy': RegressionMetrics.direction_accuracy(y_true, y_pred)
        }

        if current_price is not None:
            current_price = np.asarray(current_price, dtype=np.float64).reshape(-1)
            true_price = current_price * (1 + y_true)
            pred_price = current_price * (1 + y_pred)
            metrics['price_mape'] = float(mean_absolute_percentage_error(true_price, pred_price))

        return metrics

    @staticmethod
    def log_metrics(metrics: Dict[str, float], name: str = "模型") -> None:
        logger.info(f"📈 {name} 测试集表现:")
        logger.info(f"  MSE:  {metrics['mse']:.8f}")
        logger.info(f"  RMSE: {metrics['rmse']:.6f}")
        logger.info(f"  MAE:  {metrics['mae']:.6f} ({metrics['mae'] * 100:.4f}%)")
        logger.info(f"  R²:   {metrics['r2']:.4f}")
        logger.info(f"  方向准确率: {metrics['direction_accuracy']:.2%}")
        if 'price_mape' in metrics:
            logger.info(f"  价格MAPE: {metrics['price_mape']:.4%}")
