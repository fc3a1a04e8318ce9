"""
BiLSTM 双向LSTM回归模型
================================
两层双向LSTM + 全连接回归头，输出下一周期价格变化比例

架构:
    BiLSTM(50, 返回序列) -> Dropout(0.2)
    BiLSTM(25, 最后时刻)  -> Dropout(0.2)
    Dense(16, ReLU)       -> Dropout(0.1)
    Dense(1)

参考:
- Hochreiter & Schmidhuber, "Long Short-Term Memory"
- Graves et al., "Framewise Phoneme Classification with Bidirectional LSTM"
"""

import torch
import torch.nn as nn
from typing import Tuple, Optional
import logging

from .base import PyTorchRegressor
from config import ModelConfig, FeatureConfig

logger = logging.getLogger(__name__)


class BiLSTMRegressorNet(nn.Module):
    """
    双向LSTM回归网络

    input_shape 保存在网络上，推理前用于校验输入张量形状
    """

    def __init__(
        self,
        seq_len: int = FeatureConfig.LOOKBACK,
        input_size: int = FeatureConfig.N_FEATURES,
        lstm1_units: int = ModelConfig.LSTM1_UNITS,
        lstm2_units: int = ModelConfig.LSTM2_UNITS,
        dense_units: int = ModelConfig.DENSE_UNITS,
        lstm_dropout: float = ModelConfig.LSTM_DROPOUT,
        dense_dropout: float = ModelConfig.DENSE_DROPOUT
    ):
        super().__init__()

        self.input_shape: Tuple[int, int] = (seq_len, input_size)

        self.lstm1 = nn.LSTM(
            input_size=input_size,
            hidden_size=lstm1_units,
            batch_first=True,
            bidirectional=True
        )
        self.dropout1 = nn.Dropout(lstm_dropout)

        self.lstm2 = nn.LSTM(
            input_size=lstm1_units * 2,
            hidden_size=lstm2_units,
            batch_first=True,
            bidirectional=True
        )
        self.dropout2 = nn.Dropout(lstm_dropout)

        self.head = nn.Sequential(
            nn.Linear(lstm2_units * 2, dense_units),
            nn.ReLU(),
            nn.Dropout(dense_dropout),
            nn.Linear(dense_units, 1)
        )

        self._init_weights()

    def _init_weights(self):
        """初始化权重"""
        for name, param in self.named_parameters():
            if 'weight_ih' in name:
                nn.init.xavier_uniform_(param.data)
            elif 'weight_hh' in name:
                nn.init.orthogonal_(param.data)
            elif 'bias' in name and name.startswith('lstm'):
                param.data.fill_(0)
                # LSTM forget gate bias设为1
                n = param.size(0)
                param.data[n//4:n//2].fill_(1)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Args:
            x: (batch, seq_len, input_size)

        Returns:
            (batch, 1) 价格变化比例
        """
        seq_out, _ = self.lstm1(x)
        seq_out = self.dropout1(seq_out)

        # h_n: (2, batch, lstm2_units)，拼接前向与后向的最终隐状态
        _, (h_n, _) = self.lstm2(seq_out)
        h_concat = torch.cat([h_n[-2], h_n[-1]], dim=1)
        h_concat = self.dropout2(h_concat)

        return self.head(h_concat)


class BiLSTMRegressor(PyTorchRegressor):
    """BiLSTM价格变化回归器"""

    def __init__(
        self,
        lstm1_units: Optional[int] = None,
        lstm2_units: Optional[int] = None,
        dense_units: Optional[int] = None,
        lstm_dropout: Optional[float] = None,
        dense_dropout: Optional[float] = None,
        **kwargs
    ):
        super().__init__(name="BiLSTM", **kwargs)

        self.lstm1_units = lstm1_units or self.config.get('lstm1_units', ModelConfig.LSTM1_UNITS)
        self.lstm2_units = lstm2_units or self.config.get('lstm2_units', ModelConfig.LSTM2_UNITS)
        self.dense_units = dense_units or self.config.get('dense_units', ModelConfig.DENSE_UNITS)
        self.lstm_dropout = ModelConfig.LSTM_DROPOUT if lstm_dropout is None else lstm_dropout
        self.dense_dropout = ModelConfig.DENSE_DROPOUT if dense_dropout is None else dense_dropout

    def build(self, input_shape: Tuple[int, int]) -> None:
        """构建模型"""
        seq_len, n_features = input_shape
        self.input_shape = (int(seq_len), int(n_features))

        # checkpoint中恢复的超参数优先
        self.lstm1_units = self.config.get('lstm1_units', self.lstm1_units)
        self.lstm2_units = self.config.get('lstm2_units', self.lstm2_units)
        self.dense_units = self.config.get('dense_units', self.dense_units)
        self.lstm_dropout = self.config.get('lstm_dropout', self.lstm_dropout)
        self.dense_dropout = self.config.get('dense_dropout', self.dense_dropout)

        # 保存到config供save/load使用
        self.config.update({
            'lstm1_units': self.lstm1_units,
            'lstm2_units': self.lstm2_units,
            'dense_units': self.dense_units,
            'lstm_dropout': self.lstm_dropout,
            'dense_dropout': self.dense_dropout
        })

        self.model = BiLSTMRegressorNet(
            seq_len=self.input_shape[0],
            input_size=self.input_shape[1],
            lstm1_units=self.lstm1_units,
            lstm2_units=self.lstm2_units,
            dense_units=self.dense_units,
            lstm_dropout=self.lstm_dropout,
            dense_dropout=self.dense_dropout
        )

        self.optimizer = torch.optim.AdamW(
            self.model.parameters(),
            lr=self.learning_rate,
            weight_decay=ModelConfig.WEIGHT_DECAY
        )

        self.criterion = nn.MSELoss()

        self.scheduler = torch.optim.lr_scheduler.ReduceLROnPlateau(
            self.optimizer, mode='min', factor=0.5, patience=5
        )

        total_params = sum(p.numel() for p in self.model.parameters())
        logger.info(f"BiLSTM模型构建完成")
        logger.info(f"  输入形状: ({seq_len}, {n_features})")
        logger.info(f"  LSTM单元: {self.lstm1_units} -> {self.lstm2_units}, Dense: {self.dense_units}")
        logger.info(f"  总参数量: {total_params:,}")
