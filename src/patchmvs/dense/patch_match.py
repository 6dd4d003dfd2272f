"""Patch-match multi-view stereo with checkerboard propagation."""

import logging

import torch
from torch.profiler import record_function

from ..errors import PreconditionViolation
from .cost import PatchNccAccumulator, aggregate_best_costs, sample_bilinear
from .state import SolverState

logger = logging.getLogger(__name__)

# Neighbour offsets (du, dv); odd distances always land on the other color
NEIGHBOUR_OFFSETS = (
    (-1, 0),
    (1, 0),
    (0, -1),
    (0, 1),
    (-5, 0),
    (5, 0),
    (0, -5),
    (0, 5),
)


class PatchMatchSolver:
    """Dense depth/normal estimation by iterative plane-hypothesis refinement.

    Every reference pixel holds a slanted-plane hypothesis (depth along the
    reference z axis and a unit normal facing the camera). Hypotheses start
    uniformly distributed in disparity and improve through red/black
    checkerboard sweeps: each half-sweep tries the planes of near and far
    neighbours, one random restart and a few local perturbations with
    shrinking range, keeping any candidate with lower cost.

    The cost of a plane is 1 - NCC between the reference patch and the patch
    it induces in each selected view, averaged over the ``n_best`` lowest
    view costs.
    """

    def solve(self, state: SolverState, textures: torch.Tensor) -> None:
        """Run patch match and write results into ``state.lines``.

        Args:
            state: Planned solver state.
            textures: Grayscale images, shape (N, H, W), float32 in [0, 255].

        Raises:
            PreconditionViolation: If the state is unplanned or its geometry
                disagrees with the textures.
        """
        with record_function("patch_match_solve"), torch.no_grad():
            run = _PatchMatchRun(state, textures)
            run.initialize()
            for iteration in range(state.params.iterations):
                for color in (0, 1):
                    run.sweep(iteration, color)
            run.write_back()


class _PatchMatchRun:
    """Working buffers of a single solver invocation."""

    def __init__(self, state: SolverState, textures: torch.Tensor):
        rig, params, lines = state.rig, state.params, state.lines
        N, H, W = textures.shape

        if not rig.view_selection_subset:
            raise PreconditionViolation("solver state has not been planned")
        if lines.n != H * W or lines.s != W:
            raise PreconditionViolation(
                f"result buffer planned for {lines.n} pixels (stride {lines.s}) "
                f"but textures are {W}x{H}"
            )
        if N != rig.num_cameras:
            raise PreconditionViolation(
                f"{N} texture layer(s) for a rig of {rig.num_cameras} cameras"
            )

        self.state = state
        self.params = params
        self.lines = lines
        self.device = textures.device
        self.height, self.width = H, W

        views = rig.view_selection_subset
        ref = rig.reference_camera

        self.ref_texture = textures[rig.reference : rig.reference + 1] / 255.0
        self.src_textures = textures[views] / 255.0  # (V, H, W)
        self.src_P = torch.stack([rig.cameras[i].P for i in views]).to(self.device)
        self.K_inv = torch.linalg.inv(ref.K.to(self.device))

        # Disparity <-> depth through the first selected view's baseline
        self.fb = rig.f * rig.cameras[views[0]].baseline

        n = H * W
        idx = torch.arange(n, device=self.device)
        self.u = (idx % lines.s).float()
        self.v = torch.div(idx, lines.s, rounding_mode="floor").float()
        self.rays = self._back_project(self.u, self.v)  # (n, 3), z == 1

        # Checkerboard colors
        parity = (self.u + self.v).long() % 2
        self.colors = [idx[parity == 0], idx[parity == 1]]

        self.generator = torch.Generator(device=self.device)
        if params.seed is not None:
            self.generator.manual_seed(params.seed)
        else:
            self.generator.seed()

        self.depth = torch.empty(n, device=self.device)
        self.normal = torch.empty(n, 3, device=self.device)
        self.cost = torch.empty(n, device=self.device)

        self.min_count = (params.box_hsize * params.box_vsize) // 2

    def _back_project(self, u: torch.Tensor, v: torch.Tensor) -> torch.Tensor:
        """Reference rays through pixels (u, v), scaled to unit depth."""
        pixels_h = torch.stack([u, v, torch.ones_like(u)], dim=-1)
        return pixels_h @ self.K_inv.T

    def _rand(self, *shape: int) -> torch.Tensor:
        return torch.rand(*shape, generator=self.generator, device=self.device)

    def _random_depths(self, m: int) -> torch.Tensor:
        """Depths drawn uniformly in disparity between the planned bounds."""
        lo, hi = self.params.min_disparity, self.params.max_disparity
        disparity = lo + self._rand(m) * (hi - lo)
        return self.fb / disparity

    def _face_camera(self, normals: torch.Tensor, rays: torch.Tensor) -> torch.Tensor:
        """Normalize and flip normals so they point toward the camera."""
        normals = normals / torch.linalg.norm(normals, dim=-1, keepdim=True).clamp(
            min=1e-12
        )
        facing = (normals * rays).sum(dim=-1, keepdim=True) > 0
        return torch.where(facing, -normals, normals)

    def _random_normals(self, pix: torch.Tensor) -> torch.Tensor:
        g = torch.randn(
            pix.shape[0], 3, generator=self.generator, device=self.device
        )
        return self._face_camera(g, self.rays[pix])

    def _plane_cost(
        self,
        pix: torch.Tensor,
        depth: torch.Tensor,
        normal: torch.Tensor,
    ) -> torch.Tensor:
        """Matching cost of plane hypotheses at reference pixels ``pix``."""
        with record_function("plane_cost"):
            m = pix.shape[0]
            V = self.src_textures.shape[0]
            hh = self.params.box_hsize // 2
            hv = self.params.box_vsize // 2

            points = depth.unsqueeze(-1) * self.rays[pix]  # (m, 3)
            plane_offset = (normal * points).sum(dim=-1)  # n . X
            u0, v0 = self.u[pix], self.v[pix]

            R = self.src_P[:, :, :3]  # (V, 3, 3)
            T = self.src_P[:, :, 3:]  # (V, 3, 1)

            acc = PatchNccAccumulator((V, m), self.device)
            for dv in range(-hv, hv + 1):
                for du in range(-hh, hh + 1):
                    qu = u0 + du
                    qv = v0 + dv
                    ref_vals, ref_ok = sample_bilinear(self.ref_texture, qu, qv)

                    # Intersect the patch pixel's ray with the plane
                    q_rays = self._back_project(qu, qv)  # (m, 3)
                    denom = (normal * q_rays).sum(dim=-1)
                    scale = plane_offset / denom
                    ok = ref_ok[0] & (denom.abs() > 1e-8) & (scale > 0)
                    q_points = scale.unsqueeze(-1) * q_rays  # (m, 3)

                    proj = R @ q_points.T + T  # (V, 3, m)
                    z = proj[:, 2]
                    src_vals, src_ok = sample_bilinear(
                        self.src_textures, proj[:, 0] / z, proj[:, 1] / z
                    )

                    valid = ok.unsqueeze(0) & src_ok & (z > 1e-8)
                    acc.add(ref_vals, src_vals, valid)

            view_costs = acc.cost(self.min_count)
            return aggregate_best_costs(view_costs, self.params.n_best)

    def _try(
        self,
        pix: torch.Tensor,
        depth: torch.Tensor,
        normal: torch.Tensor,
        ok: torch.Tensor | None = None,
    ) -> None:
        """Adopt candidate hypotheses that lower the cost."""
        if ok is not None:
            depth = torch.where(ok, depth, self.depth[pix])
        cost = self._plane_cost(pix, depth, normal)
        if ok is not None:
            cost = torch.where(ok, cost, torch.full_like(cost, float("inf")))

        better = cost < self.cost[pix]
        sel = pix[better]
        self.depth[sel] = depth[better]
        self.normal[sel] = normal[better]
        self.cost[sel] = cost[better]

    def initialize(self) -> None:
        """Draw random hypotheses for every pixel and score them."""
        with record_function("patch_match_init"):
            n = self.depth.shape[0]
            pix = torch.arange(n, device=self.device)
            self.depth = self._random_depths(n)
            self.normal = self._random_normals(pix)
            self.cost = self._plane_cost(pix, self.depth, self.normal)

    def sweep(self, iteration: int, color: int) -> None:
        """Update all pixels of one checkerboard color."""
        pix = self.colors[color]
        if pix.numel() == 0:
            return

        with record_function("patch_match_propagate"):
            self._propagate(pix)

        with record_function("patch_match_refine"):
            self._try(pix, self._random_depths(pix.shape[0]), self._random_normals(pix))
            for step in range(self.params.refinement_steps):
                self._refine(pix, 0.5 ** (step + 1) / (iteration + 1))

    def _propagate(self, pix: torch.Tensor) -> None:
        """Try the planes of neighbouring pixels (of the other color)."""
        u0, v0 = self.u[pix], self.v[pix]
        rays = self.rays[pix]
        d_min, d_max = self.params.depth_min, self.params.depth_max

        for du, dv in NEIGHBOUR_OFFSETS:
            nu = u0 + du
            nv = v0 + dv
            inside = (nu >= 0) & (nu < self.width) & (nv >= 0) & (nv < self.height)
            nb = (
                nv.clamp(0, self.height - 1) * self.lines.s
                + nu.clamp(0, self.width - 1)
            ).long()

            # Flipping keeps the plane but makes it face this pixel's ray
            nb_normal = self._face_camera(self.normal[nb], rays)
            nb_points = self.depth[nb].unsqueeze(-1) * self.rays[nb]
            denom = (nb_normal * rays).sum(dim=-1)
            cand = (nb_normal * nb_points).sum(dim=-1) / denom

            ok = inside & torch.isfinite(cand) & (cand >= d_min) & (cand <= d_max)
            self._try(pix, cand, nb_normal, ok)

    def _refine(self, pix: torch.Tensor, scale: float) -> None:
        """Perturb current hypotheses within a range shrinking with ``scale``."""
        lo, hi = self.params.min_disparity, self.params.max_disparity
        m = pix.shape[0]

        disparity = self.fb / self.depth[pix]
        disparity = disparity + (self._rand(m) * 2.0 - 1.0) * scale * (hi - lo)
        disparity = disparity.clamp(lo, hi)

        normal = self.normal[pix] + (self._rand(m, 3) * 2.0 - 1.0) * scale
        normal = self._face_camera(normal, self.rays[pix])

        self._try(pix, self.fb / disparity, normal)

    def write_back(self) -> None:
        """Copy the converged hypotheses into the result buffer."""
        norm4 = torch.cat([self.normal, self.depth.unsqueeze(-1)], dim=-1)
        self.lines.norm4.copy_(norm4)
        self.lines.cost.copy_(self.cost)
        logger.debug(
            "Patch match done: %d pixels, mean cost %.4f",
            self.cost.shape[0],
            self.cost.mean().item(),
        )
