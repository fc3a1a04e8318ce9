"""
模型基类定义
================================
序列回归模型的通用训练/预测/保存逻辑
输出为下一周期的价格变化比例 (future - current) / current
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Tuple, Optional, Sized, List, cast
import numpy as np
import torch
import torch.nn as nn
from pathlib import Path
import logging

from config import ModelConfig

logger = logging.getLogger(__name__)


class PyTorchRegressor(ABC):
    """
    PyTorch序列回归模型基类

    子类实现 build() 构建网络，其余训练、预测、保存/加载由基类提供
    """

    def __init__(
        self,
        name: str,
        device: Optional[str] = None,
        batch_size: int = ModelConfig.BATCH_SIZE,
        learning_rate: float = ModelConfig.LEARNING_RATE,
        epochs: int = ModelConfig.EPOCHS,
        early_stopping_patience: int = ModelConfig.EARLY_STOPPING_PATIENCE,
        **kwargs
    ):
        self.name = name
        self.config: Dict[str, Any] = dict(kwargs)

        # 自动选择设备
        if device is None:
            self.device = torch.device('cuda' if torch.cuda.is_available() else 'cpu')
        else:
            self.device = torch.device(device)

        self.batch_size = batch_size
        self.learning_rate = learning_rate
        self.epochs = epochs
        self.early_stopping_patience = early_stopping_patience

        self.model: Optional[nn.Module] = None
        self.input_shape: Optional[Tuple[int, int]] = None
        self.optimizer = None
        self.criterion = None
        self.scheduler = None
        self.history: Dict[str, List[float]] = {'train_loss': [], 'val_loss': [], 'train_mae': [], 'val_mae': []}
        self._is_trained = False

        logger.info(f"使用设备: {self.device}")

    @abstractmethod
    def build(self, input_shape: Tuple[int, int]) -> None:
        """构建模型"""
        pass

    @property
    def is_trained(self) -> bool:
        return self._is_trained

    def _create_dataloader(
        self,
        X: np.ndarray,
        y: Optional[np.ndarray] = None,
        shuffle: bool = True
    ) -> torch.utils.data.DataLoader:
        """创建DataLoader"""
        X_tensor = torch.as_tensor(X, dtype=torch.float32)

        if y is not None:
            y_tensor = torch.as_tensor(y, dtype=torch.float32).reshape(-1, 1)
            dataset = torch.utils.data.TensorDataset(X_tensor, y_tensor)
        else:
            dataset = torch.utils.data.TensorDataset(X_tensor)

        return torch.utils.data.DataLoader(
            dataset,
            batch_size=self.batch_size,
            shuffle=shuffle,
            pin_memory=True if self.device.type == 'cuda' else False
        )

    def _run_epoch(self, loader: torch.utils.data.DataLoader, train: bool) -> Tuple[float, float]:
        """跑一轮，返回 (平均MSE, 平均MAE)"""
        total_loss, total_mae = 0.0, 0.0
        self.model.train(train)

        with torch.set_grad_enabled(train):
            for batch_X, batch_y in loader:
                batch_X = batch_X.to(self.device)
                batch_y = batch_y.to(self.device)

                if train:
                    self.optimizer.zero_grad()

                outputs = self.model(batch_X)
                loss = self.criterion(outputs, batch_y)

                if train:
                    loss.backward()
                    # 梯度裁剪
                    torch.nn.utils.clip_grad_norm_(self.model.parameters(), max_norm=1.0)
                    self.optimizer.step()

                total_loss += loss.item() * len(batch_y)
                total_mae += torch.abs(outputs - batch_y).sum().item()

        n = len(cast(Sized, loader.dataset))
        return total_loss / n, total_mae / n

    def train(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_val: Optional[np.ndarray] = None,
        y_val: Optional[np.ndarray] = None
    ) -> Dict[str, List[float]]:
        """
        训练模型，有验证集时按 val_loss 早停并恢复最佳权重

        Args:
            X_train: (samples, seq_len, features)
            y_train: (samples,) 价格变化比例
        """
        if self.model is None or self.optimizer is None or self.criterion is None:
            raise ValueError("请先调用build()构建模型")

        self.model.to(self.device)

        train_loader = self._create_dataloader(X_train, y_train, shuffle=True)
        val_loader = None
        if X_val is not None and y_val is not None and len(X_val) > 0:
            val_loader = self._create_dataloader(X_val, y_val, shuffle=False)

        best_val_loss = float('inf')
        patience_counter = 0
        best_state = None

        for epoch in range(self.epochs):
            train_loss, train_mae = self._run_epoch(train_loader, train=True)
            self.history['train_loss'].append(train_loss)
            self.history['train_mae'].append(train_mae)

            val_loss, val_mae = 0.0, 0.0
            if val_loader:
                val_loss, val_mae = self._run_epoch(val_loader, train=False)
                self.history['val_loss'].append(val_loss)
                self.history['val_mae'].append(val_mae)

                if self.scheduler is not None:
                    self.scheduler.step(val_loss)

                # 早停检查
                if val_loss < best_val_loss:
                    best_val_loss = val_loss
                    patience_counter = 0
                    best_state = {k: v.detach().clone() for k, v in self.model.state_dict().items()}
                else:
                    patience_counter += 1

                if patience_counter >= self.early_stopping_patience:
                    logger.info(f"早停于第 {epoch+1} 轮 (patience: {self.early_stopping_patience})")
                    break

            if (epoch + 1) % 10 == 0 or epoch == 0:
                msg = f"Epoch {epoch+1}/{self.epochs}: loss={train_loss:.6f}, mae={train_mae:.6f}"
                if val_loader:
                    msg += f", val_loss={val_loss:.6f}, val_mae={val_mae:.6f}"
                logger.info(msg)

        # 恢复最佳模型
        if best_state:
            self.model.load_state_dict(best_state)

        self._is_trained = True
        return self.history

    def predict(self, X: np.ndarray) -> np.ndarray:
        """批量预测价格变化比例，返回 (samples,)"""
        if not self._is_trained:
            raise ValueError("模型未训练")

        self.model.to(self.device)
        self.model.eval()

        dataloader = self._create_dataloader(X, shuffle=False)

        outputs = []
        with torch.no_grad():
            for batch_X, in dataloader:
                batch_X = batch_X.to(self.device)
                outputs.append(self.model(batch_X).reshape(-1).cpu().numpy())

        if not outputs:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(outputs)

    def save(self, path: Path, extra: Optional[Dict[str, Any]] = None) -> None:
        """
        保存模型

        Args:
            path: checkpoint路径
            extra: 额外元数据 (如 model_id、stats_fingerprint)
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        config = dict(self.config)
        config['input_shape'] = list(self.input_shape) if self.input_shape else None

        checkpoint = {
            'model_state_dict': self.model.state_dict(),
            'history': self.history,
            'config': config,
            'name': self.name
        }
        if extra:
            checkpoint.update(extra)

        torch.save(checkpoint, path)
        logger.info(f"模型已保存: {path}")

    def load(self, path: Path) -> Dict[str, Any]:
        """
        加载模型，未构建时按checkpoint中的 input_shape 自动构建

        Returns:
            checkpoint字典 (含元数据)
        """
        path = Path(path)
        checkpoint = torch.load(path, map_location=self.device, weights_only=False)

        config = checkpoint.get('config', {})
        if self.model is None:
            input_shape = config.get('input_shape')
            if not input_shape:
                raise RuntimeError("模型未构建！请先调用 build() 方法，或在checkpoint中包含input_shape信息")
            self.config.update({k: v for k, v in config.items() if k != 'input_shape'})
            self.build(input_shape=tuple(input_shape))

        self.model.load_state_dict(checkpoint['model_state_dict'])
        self.model.eval()
        self.history = checkpoint.get('history', self.history)
        self._is_trained = True

        logger.info(f"模型已加载: {path}")
        return checkpoint
