"""Streamlit entry point: `streamlit run app.py`.

Streamlit re-executes this script on every rerun; pokemon_list is imported once,
so its metrics and server state survive across reruns.
"""
from pokemon_list import run_app

run_app()
