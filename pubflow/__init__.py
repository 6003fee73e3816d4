"""pubflow: publish the packages of a workspace in dependency order."""
