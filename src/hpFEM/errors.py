"""Fatal numerical conditions raised by the solver core."""


class hpFEMError(RuntimeError):
    """Base class for fatal solver errors."""


class LinearSolveFailure(hpFEMError):
    """The linear-solve backend could not produce a finite Newton increment."""


class NewtonNonConvergence(hpFEMError):
    """Newton's method reached its iteration cap without meeting the tolerance."""

    def __init__(self, result):
        self.result = result
        super().__init__(
            f"Newton method did not converge: {result.iterations} iterations, "
            f"residual norm {result.residual_norm:.3e}"
        )


class SourceIterationNonConvergence(hpFEMError):
    """The eigenvalue (source) iteration reached its iteration cap."""

    def __init__(self, result):
        self.result = result
        super().__init__(
            f"Source iteration did not converge in {result.iterations} iterations "
            f"(last k_eff = {result.k_eff:.8f})"
        )
