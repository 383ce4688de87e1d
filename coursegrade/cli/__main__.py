from coursegrade.cli import run

run()
