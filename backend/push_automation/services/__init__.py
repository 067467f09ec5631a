"""Business services for the automation core."""
