"""nodedeploy core: parameter resolution, host probing and the deployment pipeline."""
