"""nodedeploy CLI commands."""
