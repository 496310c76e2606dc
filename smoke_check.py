"""Lightweight smoke test: import pokemon_list and load a single Pokémon from the live API.
This avoids starting Streamlit UI and only checks that the listing and detail requests work end to end.
"""
import pokemon_list

if __name__ == '__main__':
    results = pokemon_list.load_pokemon_list(limit=1)
    if isinstance(results, list) and len(results) == 1:
        print('load_pokemon_list OK:', results)
    else:
        raise SystemExit(f'load_pokemon_list returned unexpected result: {results!r}')
