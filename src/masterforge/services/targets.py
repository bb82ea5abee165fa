"""Deploy-target filtering and the set of build targets."""

from pydantic import BaseModel

from masterforge.models.enums import DeployTarget, should_include

__all__ = ["BuildTarget", "default_targets", "should_include"]


class BuildTarget(BaseModel):
    """A concrete deployment target with its generated-code namespace."""

    label: str
    bit: DeployTarget
    namespace: str

    model_config = {"frozen": True}

    @property
    def slug(self) -> str:
        return self.label.lower()


def default_targets(
    client_namespace: str,
    server_namespace: str,
    realtime_namespace: str,
) -> dict[str, BuildTarget]:
    """Client, server and realtime targets keyed by their slug."""
    targets = [
        BuildTarget(label="Client", bit=DeployTarget.CLIENT, namespace=client_namespace),
        BuildTarget(label="Server", bit=DeployTarget.SERVER, namespace=server_namespace),
        BuildTarget(label="Realtime", bit=DeployTarget.REALTIME, namespace=realtime_namespace),
    ]
    return {target.slug: target for target in targets}
