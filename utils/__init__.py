# Loading, naming and synthesizing experiment data for the inspector
