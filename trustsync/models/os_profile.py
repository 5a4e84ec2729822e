"""Operating system profile model."""

from pydantic import BaseModel


class OSProfile(BaseModel):
    """Trust-store layout and tooling of one OS family."""

    os_family: str
    package_manager: str
    install_command: str
    trust_anchor_dir: str
    trust_update_command: str

    class Config:
        """Pydantic config."""

        frozen = True

    def install_command_for(self, package: str) -> str:
        """
        Render the package installation command.

        Args:
            package: Package name to install

        Returns:
            Shell command string
        """
        return self.install_command.format(package=package)
