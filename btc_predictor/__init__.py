"""
BTC 时间序列特征存储与多周期价格预测引擎
================================
主要模块:
- data_collection: 历史数据接口与SQLite存储
- features: 归一化统计与特征工程（对数收益率/SMA/波动率/RSI/链上指标）
- models: 序列回归模型（BiLSTM）
- prediction: 1小时预测服务与24小时/7天外推
- dataset: 离线训练数据集构建
- validation: 测试集回归指标
"""

__version__ = "1.0.0"
__author__ = "BTC Predictor Team"
