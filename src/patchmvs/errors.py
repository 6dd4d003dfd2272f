"""Error taxonomy for the patch-match stereo kernel."""


class KernelConfigError(ValueError):
    """Configuration error surfaced through the kernel's validity status.

    Raised for camera/channel count mismatches and rigs whose geometry cannot
    be planned. The kernel catches these, records them in its ``Result`` and
    stays inert instead of crashing the host.
    """


class ViewSelectionError(KernelConfigError):
    """No auxiliary camera satisfies the view-selection angle bounds."""


class PreconditionViolation(AssertionError):
    """An upstream contract was breached (buffer size, matrix shape, slot reuse).

    These are fatal and never retried.
    """
