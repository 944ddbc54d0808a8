"""Worker scripts executed under mpiexec."""
