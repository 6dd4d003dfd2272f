"""Photometric patch costs for plane-based dense matching."""

import torch
import torch.nn.functional as F

# Cost assigned to patches that cannot be compared
INVALID_COST = 2.0


def sample_bilinear(
    textures: torch.Tensor,
    x: torch.Tensor,
    y: torch.Tensor,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Sample textures at sub-pixel locations.

    Args:
        textures: Images, shape (V, H, W), float32.
        x: Column coordinates, shape (V, M) or (M,) (shared by all images).
        y: Row coordinates, same shape as ``x``.

    Returns:
        values: Sampled intensities, shape (V, M). Zero where invalid.
        valid: Boolean mask, shape (V, M). False for non-finite or
            out-of-image coordinates.
    """
    V, H, W = textures.shape
    if x.dim() == 1:
        x = x.unsqueeze(0).expand(V, -1)
        y = y.unsqueeze(0).expand(V, -1)

    valid = (
        torch.isfinite(x)
        & torch.isfinite(y)
        & (x >= 0)
        & (x <= W - 1)
        & (y >= 0)
        & (y <= H - 1)
    )

    # grid_sample expects grid in [-1, 1] range
    grid_x = 2.0 * x / max(W - 1, 1) - 1.0
    grid_y = 2.0 * y / max(H - 1, 1) - 1.0

    # Push invalid samples out of bounds (padding_mode="zeros" -> 0)
    out = torch.tensor(2.0, device=x.device, dtype=x.dtype)
    grid_x = torch.where(valid, grid_x, out)
    grid_y = torch.where(valid, grid_y, out)

    grid = torch.stack([grid_x, grid_y], dim=-1).unsqueeze(1)  # (V, 1, M, 2)
    sampled = F.grid_sample(
        textures.unsqueeze(1),
        grid,
        mode="bilinear",
        padding_mode="zeros",
        align_corners=True,
    )  # (V, 1, 1, M)

    return sampled.reshape(V, -1), valid


class PatchNccAccumulator:
    """Running sums for normalized cross-correlation over patch samples.

    Samples are added one patch offset at a time, so memory stays
    proportional to the number of pixels rather than pixels x patch size.

    Args:
        shape: Shape of the per-pixel statistics, typically (V, M).
        device: Device for the accumulators.
    """

    def __init__(self, shape: tuple[int, ...], device: torch.device | str):
        self.count = torch.zeros(shape, device=device)
        self.sum_ref = torch.zeros(shape, device=device)
        self.sum_src = torch.zeros(shape, device=device)
        self.sum_ref_sq = torch.zeros(shape, device=device)
        self.sum_src_sq = torch.zeros(shape, device=device)
        self.sum_cross = torch.zeros(shape, device=device)

    def add(self, ref: torch.Tensor, src: torch.Tensor, valid: torch.Tensor) -> None:
        """Accumulate one sample per pixel (broadcast over leading dims)."""
        mask = valid.float()
        ref = ref * mask
        src = src * mask
        self.count += mask
        self.sum_ref += ref
        self.sum_src += src
        self.sum_ref_sq += ref * ref
        self.sum_src_sq += src * src
        self.sum_cross += ref * src

    def cost(self, min_count: float, eps: float = 1e-6) -> torch.Tensor:
        """Convert the accumulated sums to a 1 - NCC cost.

        Args:
            min_count: Minimum number of valid samples for a usable patch.
            eps: Variance floor below which a patch is textureless.

        Returns:
            Cost in [0, 2]; 0 = perfect match. Patches with too few valid
            samples or no texture get INVALID_COST.
        """
        count = self.count.clamp(min=1.0)
        mean_ref = self.sum_ref / count
        mean_src = self.sum_src / count
        var_ref = (self.sum_ref_sq / count - mean_ref**2).clamp(min=0.0)
        var_src = (self.sum_src_sq / count - mean_src**2).clamp(min=0.0)
        covar = self.sum_cross / count - mean_ref * mean_src

        ncc = covar / (torch.sqrt(var_ref * var_src) + 1e-12)
        cost = (1.0 - ncc).clamp(0.0, 2.0)

        invalid = (self.count < min_count) | (var_ref < eps) | (var_src < eps)
        return torch.where(invalid, torch.full_like(cost, INVALID_COST), cost)


def aggregate_best_costs(view_costs: torch.Tensor, n_best: int) -> torch.Tensor:
    """Average the ``n_best`` lowest costs across views.

    Args:
        view_costs: Per-view costs, shape (V, M).
        n_best: Number of lowest costs to average (clamped to V).

    Returns:
        Aggregated cost, shape (M,).
    """
    k = max(1, min(n_best, view_costs.shape[0]))
    best = torch.sort(view_costs, dim=0).values[:k]
    return best.mean(dim=0)
