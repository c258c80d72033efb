# ============================================================
# insurance_xsell/models/network.py
# Small feed-forward binary classifier:
# Dense(relu) -> Dropout -> Dense(relu) ... -> Dense(1) logit.
# ============================================================

import torch                                       # Tensors
import torch.nn as nn                              # Layers
from typing import Sequence                        # Type hints


class FeedForwardNet(nn.Module):
    """
    Multi-layer perceptron producing one logit per row.

    Dropout follows the first hidden layer only. Apply ``torch.sigmoid``
    to the output (or use ``predict_proba``) for probabilities.

    input:  (batch, input_dim)
    output: (batch,)
    """

    def __init__(self, input_dim: int, hidden_units: Sequence[int] = (32, 16), dropout: float = 0.2):
        super().__init__()
        self.input_dim = int(input_dim)
        self.hidden_units = [int(units) for units in hidden_units]
        self.dropout = float(dropout)

        layers = []
        width = self.input_dim
        for i, units in enumerate(self.hidden_units):
            layers.append(nn.Linear(width, units))
            layers.append(nn.ReLU())
            if i == 0 and self.dropout > 0:
                layers.append(nn.Dropout(self.dropout))
            width = units
        layers.append(nn.Linear(width, 1))
        self.net = nn.Sequential(*layers)

        # init
        for module in self.net:
            if isinstance(module, nn.Linear):
                nn.init.xavier_uniform_(module.weight)
                nn.init.constant_(module.bias, 0.0)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.net(x).squeeze(-1)

    @torch.no_grad()
    def predict_proba(self, x: torch.Tensor) -> torch.Tensor:
        """Sigmoid probabilities in eval mode (dropout off)."""
        was_training = self.training
        self.eval()
        probs = torch.sigmoid(self.forward(x))
        if was_training:
            self.train()
        return probs

    def count_params(self) -> int:
        return sum(p.numel() for p in self.parameters())
